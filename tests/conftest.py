"""
Pytest configuration and shared fixtures for the identity-level extension tests.

This module provides:
- A simulated profile registry answering GetProfileLevel calls
- Registry clients and extensions wired to it
- Metrics reset between tests
"""

import os
import sys
import threading
import time

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from eth_abi import decode, encode

from account_slots import AccountSlotsExtension
from eth_rpc import MockEthClient, RpcTransportError, canonical_address
from monitoring.metrics import metrics
from registry_client import ProfileRegistryClient

REGISTRY_ADDR = "0x1D4DAf3D826683DA8b68d9f5165ae1196Cf97b52"
ADDR_A = "0xfe9e8709d3215310075d67e3ed32a380ccf451c8"
ADDR_B = "0xb6b5089844f439018635bab88b36cd4705f0d090"
ADDR_C = "0x00000000000000000000000000000000000000c0"


class SimulatedRegistry:
    """
    Profile registry contract behind a MockEthClient.

    Levels are configured per address; an address mapped to an exception
    makes the call fail with it. Unconfigured addresses time out.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._responses: dict[str, int | Exception] = {}
        self.client = MockEthClient(handler=self.handle)

    def set_level(self, address: str, level: int) -> None:
        with self._lock:
            self._responses[canonical_address(address)] = level

    def set_failure(self, address: str, error: Exception | None = None) -> None:
        with self._lock:
            self._responses[canonical_address(address)] = error or RpcTransportError(
                "eth_call timed out after 0.5s"
            )

    def handle(self, to: str, data: bytes) -> bytes:
        (address,) = decode(["address"], data[4:])
        with self._lock:
            response = self._responses.get(
                canonical_address(address), RpcTransportError("eth_call timed out after 0.5s")
            )
        if isinstance(response, Exception):
            raise response
        return encode(["uint8"], [int(response)])

    @property
    def call_count(self) -> int:
        return self.client.call_count


def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll `predicate` until it holds or `timeout` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with empty metrics."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def registry_chain():
    """Simulated profile registry."""
    return SimulatedRegistry()


@pytest.fixture
def registry(registry_chain):
    """Registry client talking to the simulated registry."""
    return ProfileRegistryClient(REGISTRY_ADDR, registry_chain.client)


@pytest.fixture
def make_extension(registry):
    """Factory for extensions that are stopped after the test."""
    created = []

    def factory(update_interval: float = 60.0, seed_addresses=()):
        extension = AccountSlotsExtension(
            registry, update_interval=update_interval, seed_addresses=seed_addresses
        )
        created.append(extension)
        return extension

    yield factory

    for extension in created:
        extension.stop()


@pytest.fixture
def extension(make_extension):
    """Extension whose loop does not tick during a test."""
    return make_extension()

