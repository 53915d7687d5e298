"""
Configuration for the identity-level transaction pool extension.

Environment Variables:
    TXPOOL_IDENTITY_REGISTRY_ADDR=0x1D4DAf3D826683DA8b68d9f5165ae1196Cf97b52
    TXPOOL_IDENTITY_RPC_ENDPOINT=http://localhost:8545
    TXPOOL_IDENTITY_UPDATE_INTERVAL=5.0
    TXPOOL_IDENTITY_REQUEST_TIMEOUT=0.5
    TXPOOL_IDENTITY_SEED_ADDRESSES=0xabc...,0xdef...
"""

import os
from dataclasses import dataclass, field

from eth_rpc import DEFAULT_RPC_ENDPOINT, canonical_address

# =============================================================================
# Constants
# =============================================================================

DEFAULT_PROFILE_REGISTRY_ADDR = "0x1D4DAf3D826683DA8b68d9f5165ae1196Cf97b52"

# Seconds between refresh sweeps
DEFAULT_UPDATE_INTERVAL = 5.0

# Seconds allowed for a single registry round trip
DEFAULT_REQUEST_TIMEOUT = 0.5

# Accounts tracked from startup, at UNKNOWN until the first sweep
DEFAULT_SEED_ADDRESSES = (
    "0xfe9e8709d3215310075d67e3ed32a380ccf451c8",
    "0xB6b5089844F439018635bab88B36cd4705f0d090",
)


class ConfigurationError(Exception):
    """The extension cannot be created with the given configuration."""


def _parse_address_list(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _parse_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


@dataclass
class ExtensionConfig:
    """Configuration for AccountSlotsExtension."""

    profile_registry_addr: str = DEFAULT_PROFILE_REGISTRY_ADDR
    rpc_endpoint: str = DEFAULT_RPC_ENDPOINT
    update_interval: float = DEFAULT_UPDATE_INTERVAL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    seed_addresses: tuple[str, ...] = field(default_factory=lambda: DEFAULT_SEED_ADDRESSES)

    @classmethod
    def from_env(cls) -> "ExtensionConfig":
        """Create configuration from environment variables."""
        seeds = os.getenv("TXPOOL_IDENTITY_SEED_ADDRESSES")
        return cls(
            profile_registry_addr=os.getenv(
                "TXPOOL_IDENTITY_REGISTRY_ADDR", DEFAULT_PROFILE_REGISTRY_ADDR
            ),
            rpc_endpoint=os.getenv("TXPOOL_IDENTITY_RPC_ENDPOINT", DEFAULT_RPC_ENDPOINT),
            update_interval=_parse_float(
                "TXPOOL_IDENTITY_UPDATE_INTERVAL", DEFAULT_UPDATE_INTERVAL
            ),
            request_timeout=_parse_float(
                "TXPOOL_IDENTITY_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT
            ),
            seed_addresses=(
                _parse_address_list(seeds) if seeds is not None else DEFAULT_SEED_ADDRESSES
            ),
        )

    def validate(self) -> None:
        """
        Check the configuration.

        Raises:
            ConfigurationError: On a malformed address or a non-positive duration
        """
        try:
            canonical_address(self.profile_registry_addr)
        except ValueError as e:
            raise ConfigurationError(f"Invalid profile registry address: {e}") from e

        for address in self.seed_addresses:
            try:
                canonical_address(address)
            except ValueError as e:
                raise ConfigurationError(f"Invalid seed address: {e}") from e

        if self.update_interval <= 0:
            raise ConfigurationError("update_interval must be positive")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if not self.rpc_endpoint:
            raise ConfigurationError("rpc_endpoint must not be empty")
