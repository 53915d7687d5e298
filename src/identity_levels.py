"""
Identity levels and per-account transaction pool slot quotas.

The profile registry contract reports an account's identity level as a
uint8. The transaction pool admits more pending transactions for accounts
with a higher level.
"""

from enum import IntEnum
from types import MappingProxyType


class IdentityLevel(IntEnum):
    """Identity levels reported by GetProfileLevel, in ascending trust."""

    UNKNOWN = 0
    ANONYMOUS = 1
    REGISTERED = 2
    IDENTIFIED = 3
    PROFESSIONAL = 4

    @classmethod
    def from_value(cls, value: int) -> "IdentityLevel":
        """Map a raw registry value to a level; unknown values become UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


# Pending transaction slots per account, by identity level
ACCOUNT_SLOTS_DEFAULTS = MappingProxyType(
    {
        IdentityLevel.UNKNOWN: 16,
        IdentityLevel.ANONYMOUS: 32,
        IdentityLevel.REGISTERED: 64,
        IdentityLevel.IDENTIFIED: 128,
        IdentityLevel.PROFESSIONAL: 256,
    }
)


def slots_for_level(level: int) -> int:
    """Return the slot quota for a level, falling back to the UNKNOWN quota."""
    slots = ACCOUNT_SLOTS_DEFAULTS.get(level)
    if slots is None:
        return ACCOUNT_SLOTS_DEFAULTS[IdentityLevel.UNKNOWN]
    return slots
