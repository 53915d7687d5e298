"""
Identity-level admission control for the transaction pool.

AccountSlotsExtension tells the pool how many pending transactions an
account may hold. The quota follows the account's identity level in the
profile registry:

1. First lookup of an address queries the registry synchronously and caches
   the level (UNKNOWN if the registry could not be read).
2. A background thread re-queries every cached address each update interval
   and overwrites entries whose level changed.
3. Registry failures never reach the pool: a miss degrades to the UNKNOWN
   quota, a failed refresh keeps the cached level.

Usage:
    extension = AccountSlotsExtension.from_config(ExtensionConfig.from_env())
    slots = extension.account_slots("0xfe9e8709d3215310075d67e3ed32a380ccf451c8")
    ...
    extension.stop()
"""

import logging
import threading
from enum import Enum
from typing import Any

from config import DEFAULT_UPDATE_INTERVAL, ConfigurationError, ExtensionConfig
from eth_rpc import EthRpcClient, canonical_address
from identity_levels import IdentityLevel, slots_for_level
from monitoring.metrics import metrics
from registry_client import ProfileRegistryClient, RegistryUnavailable

logger = logging.getLogger(__name__)


class ExtensionState(Enum):
    """Lifecycle of the refresh loop."""

    RUNNING = "running"
    STOPPED = "stopped"


class AccountSlotsExtension:
    """
    Per-account slot quotas backed by a refreshed identity-level cache.

    The level store is a dict guarded by one lock. account_slots holds the
    lock for its whole check/lookup/insert sequence and only ever inserts
    absent addresses. Refresh sweeps snapshot the address set, query the
    registry without the lock, and take it again only to overwrite entries
    that changed; they never insert. So each entry has a single writer at
    any time.

    The refresh loop is started by the constructor; stop() ends it.
    """

    def __init__(
        self,
        registry: ProfileRegistryClient,
        update_interval: float = DEFAULT_UPDATE_INTERVAL,
        seed_addresses: tuple[str, ...] | list[str] = (),
        request_timeout: float | None = None,
    ):
        """
        Args:
            registry: Profile registry reader
            update_interval: Seconds between refresh sweeps
            seed_addresses: Accounts tracked from startup at UNKNOWN
            request_timeout: Registry round-trip timeout, the registry
                client's default if None

        Raises:
            ConfigurationError: On a non-positive interval or a bad seed address
        """
        if update_interval <= 0:
            raise ConfigurationError("update_interval must be positive")

        self.registry = registry
        self.update_interval = update_interval
        self.request_timeout = request_timeout

        self._lock = threading.Lock()
        # One sweep at a time, so the loop and an explicit refresh() never race
        self._refresh_lock = threading.Lock()
        self._levels: dict[str, IdentityLevel] = {}
        for address in seed_addresses:
            try:
                self._levels[canonical_address(address)] = IdentityLevel.UNKNOWN
            except ValueError as e:
                raise ConfigurationError(f"Invalid seed address: {e}") from e
        metrics.set_gauge("identity_cache_size", len(self._levels))

        # Set by from_config when it created the RPC client, closed on stop()
        self._owned_rpc: EthRpcClient | None = None

        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()
        self._state = ExtensionState.RUNNING
        self._thread = threading.Thread(
            target=self._loop, name="IdentityLevelRefresh", daemon=True
        )
        self._thread.start()
        logger.info(
            "Identity level extension started",
            extra={
                "registry": registry.registry_address,
                "update_interval": update_interval,
                "seeded": len(self._levels),
            },
        )

    @classmethod
    def from_config(
        cls, config: ExtensionConfig, rpc: EthRpcClient | None = None
    ) -> "AccountSlotsExtension":
        """
        Build the extension and its registry client from configuration.

        Without `rpc`, a client for config.rpc_endpoint is created and owned by
        the extension: stop() closes it. A supplied `rpc` is left to the caller.

        Raises:
            ConfigurationError: If the configuration or the registry ABI is invalid
        """
        config.validate()
        owned_rpc = None
        if rpc is None:
            rpc = owned_rpc = EthRpcClient(config.rpc_endpoint)

        try:
            registry = ProfileRegistryClient(
                config.profile_registry_addr, rpc, timeout=config.request_timeout
            )
            extension = cls(
                registry,
                update_interval=config.update_interval,
                seed_addresses=config.seed_addresses,
                request_timeout=config.request_timeout,
            )
        except Exception:
            if owned_rpc is not None:
                owned_rpc.close()
            raise

        extension._owned_rpc = owned_rpc
        return extension

    # =========================================================================
    # Transaction pool hooks
    # =========================================================================

    def account_slots(self, address: str | bytes) -> int:
        """
        Number of pending transaction slots the account is entitled to.

        Never raises for a well-formed address: a registry failure on first
        sight caches and answers with the UNKNOWN quota.

        Raises:
            ValueError: If `address` is not a 20-byte address
        """
        key = canonical_address(address)

        with self._lock:
            level = self._levels.get(key)
            if level is None:
                metrics.increment("identity_cache_misses_total")
                level = self._lookup_or_unknown(key)
                self._levels[key] = level
                metrics.set_gauge("identity_cache_size", len(self._levels))
            else:
                metrics.increment("identity_cache_hits_total")

            return slots_for_level(level)

    def validate_transaction(self, tx: Any, local: bool) -> None:
        """Accept every transaction; admission is limited through account_slots only."""
        return None

    def _lookup_or_unknown(self, address: str) -> IdentityLevel:
        try:
            return self.registry.lookup(address, self.request_timeout)
        except RegistryUnavailable:
            return IdentityLevel.UNKNOWN

    # =========================================================================
    # Cache inspection
    # =========================================================================

    def get_level(self, address: str | bytes) -> IdentityLevel | None:
        """Cached level of an address, without querying the registry."""
        key = canonical_address(address)
        with self._lock:
            return self._levels.get(key)

    def get_levels(self) -> dict[str, IdentityLevel]:
        """Copy of the whole level store."""
        with self._lock:
            return dict(self._levels)

    def __len__(self) -> int:
        with self._lock:
            return len(self._levels)

    # =========================================================================
    # Refresh loop
    # =========================================================================

    @property
    def state(self) -> ExtensionState:
        with self._state_lock:
            return self._state

    def refresh(self) -> int:
        """
        Run one refresh sweep over every cached address.

        A failed lookup leaves the cached level as it is. The sweep ends
        early once stop() has been requested.

        Returns:
            Number of entries whose level changed
        """
        with self._refresh_lock:
            return self._sweep()

    def _sweep(self) -> int:
        with self._lock:
            snapshot = list(self._levels.items())

        changed = 0
        failed = 0
        for address, cached_level in snapshot:
            if self._stop_event.is_set():
                break

            try:
                level = self.registry.lookup(address, self.request_timeout)
            except RegistryUnavailable:
                failed += 1
                continue

            if level == cached_level:
                continue

            with self._lock:
                self._levels[address] = level
            changed += 1
            metrics.increment("identity_level_changes_total")
            logger.info(
                "Identity level changed",
                extra={
                    "address": address,
                    "old_level": cached_level.name,
                    "new_level": level.name,
                },
            )

        metrics.increment("refresh_sweeps_total")
        logger.debug(
            "Refresh sweep finished",
            extra={"addresses": len(snapshot), "changed": changed, "failed": failed},
        )
        return changed

    def _loop(self) -> None:
        while not self._stop_event.wait(self.update_interval):
            try:
                self.refresh()
            except Exception:
                # Keep refreshing on the next tick rather than lose the thread
                logger.exception("Refresh sweep failed")

    def stop(self) -> None:
        """
        Stop the refresh loop and wait for its thread to exit.

        Safe to call more than once. The stop signal is checked between
        registry calls, so an in-flight call of the loop is not cancelled and
        runs to completion first. requests applies the timeout to the connect
        and to each socket read separately, so that call usually ends within
        2 x request_timeout; a node that keeps trickling bytes can hold it
        longer. An RPC client created by from_config is closed here.
        """
        with self._state_lock:
            already_stopped = self._state == ExtensionState.STOPPED
            self._state = ExtensionState.STOPPED

        self._stop_event.set()
        if self._thread is not threading.current_thread():
            self._thread.join()
        if already_stopped:
            return

        if self._owned_rpc is not None:
            self._owned_rpc.close()
        logger.info("Identity level extension stopped")

    def __enter__(self) -> "AccountSlotsExtension":
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb) -> bool:
        self.stop()
        return False
