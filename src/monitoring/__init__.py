"""
Monitoring for the identity-level extension.

Usage:
    from monitoring import configure_logging, metrics

    configure_logging(level="INFO")
    metrics.increment("refresh_sweeps_total")
    print(metrics.to_prometheus())
"""

from monitoring.logging import configure_logging
from monitoring.metrics import MetricsCollector, metrics

__all__ = [
    "MetricsCollector",
    "metrics",
    "configure_logging",
]
