"""
Tests for monitoring (src/monitoring/)

Tests cover:
- MetricsCollector counters, gauges and histograms
- Prometheus export
- JSON and console log formatting
"""

import json
import logging

import pytest

from monitoring.logging import ConsoleFormatter, JSONFormatter, configure_logging
from monitoring.metrics import MetricsCollector


@pytest.fixture
def collector():
    return MetricsCollector()


def _record(msg="Registry lookup failed", level=logging.WARNING, **extra):
    record = logging.LogRecord("registry_client", level, "registry_client.py", 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_counter(self, collector):
        collector.increment("refresh_sweeps_total")
        collector.increment("refresh_sweeps_total", 2)
        assert collector.get_counter("refresh_sweeps_total") == 3

    def test_labelled_counters_are_separate(self, collector):
        collector.increment("registry_lookups_total", labels={"result": "ok"})
        collector.increment("registry_lookups_total", labels={"result": "transport_error"})
        collector.increment("registry_lookups_total", labels={"result": "ok"})

        assert collector.get_counter("registry_lookups_total", {"result": "ok"}) == 2
        assert collector.get_counter("registry_lookups_total", {"result": "transport_error"}) == 1
        assert collector.get_counter("registry_lookups_total") == 0

    def test_gauge(self, collector):
        collector.set_gauge("identity_cache_size", 5)
        collector.set_gauge("identity_cache_size", 3)
        assert collector.get_gauge("identity_cache_size") == 3

    def test_histogram_buckets(self, collector):
        for value in (0.5, 20, 700):
            collector.timing("registry_lookup_duration_ms", value)

        histogram = collector.get_histogram("registry_lookup_duration_ms")
        assert histogram.count == 3
        assert histogram.sum == pytest.approx(720.5)
        # le=1, le=25, le=1000, +Inf
        assert histogram.bucket_counts[0] == 1
        assert histogram.bucket_counts[histogram.bounds.index(25)] == 2
        assert histogram.bucket_counts[histogram.bounds.index(1000)] == 3
        assert histogram.bucket_counts[-1] == 3

    def test_timer(self, collector):
        with collector.timer("registry_lookup_duration_ms"):
            pass
        assert collector.get_histogram("registry_lookup_duration_ms").count == 1

    def test_timer_records_on_exception(self, collector):
        with pytest.raises(RuntimeError):
            with collector.timer("registry_lookup_duration_ms"):
                raise RuntimeError("boom")
        assert collector.get_histogram("registry_lookup_duration_ms").count == 1

    def test_prometheus_export(self, collector):
        collector.increment("registry_lookups_total", labels={"result": "ok"})
        collector.set_gauge("identity_cache_size", 4)
        collector.timing("registry_lookup_duration_ms", 7)

        text = collector.to_prometheus()

        assert "# TYPE txpool_identity_registry_lookups_total counter" in text
        assert 'txpool_identity_registry_lookups_total{result="ok"} 1' in text
        assert "txpool_identity_identity_cache_size 4" in text
        assert 'txpool_identity_registry_lookup_duration_ms_bucket{le="10"} 1' in text
        assert 'txpool_identity_registry_lookup_duration_ms_bucket{le="+Inf"} 1' in text
        assert "txpool_identity_registry_lookup_duration_ms_count 1" in text

    def test_reset(self, collector):
        collector.increment("refresh_sweeps_total")
        collector.reset()
        assert collector.get_counter("refresh_sweeps_total") == 0


class TestFormatters:
    """Tests for log formatters."""

    def test_json_formatter_fields(self):
        line = JSONFormatter().format(_record(address="0xabc", error_type="transport_error"))
        entry = json.loads(line)

        assert entry["level"] == "WARNING"
        assert entry["logger"] == "registry_client"
        assert entry["message"] == "Registry lookup failed"
        assert entry["address"] == "0xabc"
        assert entry["error_type"] == "transport_error"
        assert entry["location"]["line"] == 10

    def test_json_formatter_info_has_no_location(self):
        entry = json.loads(JSONFormatter().format(_record(level=logging.INFO)))
        assert "location" not in entry

    def test_console_formatter_extras(self):
        line = ConsoleFormatter().format(_record(identity_level="PROFESSIONAL"))
        assert "[registry_client]" in line
        assert "identity_level=PROFESSIONAL" in line

    def test_configure_logging(self, tmp_path):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            log_file = tmp_path / "extension.log"
            configure_logging(level="DEBUG", json_output=True, log_file=str(log_file))

            assert root.level == logging.DEBUG
            assert len(root.handlers) == 2
            assert all(isinstance(h.formatter, JSONFormatter) for h in root.handlers)
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
