"""Access key domain types: Tier, AccessKey, ValidationResult, SessionClaims."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Tier(str, Enum):
    """Privilege tier of an access key.

    Hierarchy (higher can do everything lower can do):
    1. OWNER   (manages every key; exactly one exists; never revoked or deleted)
    2. ADMIN   (manages REGULAR keys)
    3. REGULAR (single-use game access)
    """

    REGULAR = "REGULAR"
    ADMIN = "ADMIN"
    OWNER = "OWNER"

    @property
    def level(self) -> int:
        """Numeric hierarchy level (higher = more privilege)."""
        return _TIER_LEVELS[self]

    @property
    def is_privileged(self) -> bool:
        """ADMIN and OWNER keys are reusable and may open the admin console."""
        return self.level >= _TIER_LEVELS[Tier.ADMIN]

    def has_permission(self, required: "Tier") -> bool:
        """True when this tier is at least ``required``."""
        return self.level >= required.level

    def outranks(self, target: "Tier") -> bool:
        """True when this tier may mint, revoke, reset or delete ``target`` keys.

        Strict precedence reproduces the privilege matrix: ADMIN+ acts on
        REGULAR, only OWNER acts on ADMIN, and nobody acts on OWNER.
        """
        return self.level > target.level

    @classmethod
    def parse(cls, value: str) -> "Tier":
        """Case-insensitive lookup; raises ValueError on unknown names."""
        return cls(value.strip().upper())


_TIER_LEVELS: dict[Tier, int] = {
    Tier.REGULAR: 1,
    Tier.ADMIN: 2,
    Tier.OWNER: 3,
}


@dataclass(frozen=True)
class AccessKey:
    """One row of the access_keys table."""

    id: str
    code: str
    tier: Tier
    used: bool
    revoked: bool
    created_at: datetime
    last_used_at: Optional[datetime] = None
    last_used_by: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """JSON representation for the admin key listing."""
        return {
            "id": self.id,
            "code": self.code,
            "tier": self.tier.value,
            "used": self.used,
            "revoked": self.revoked,
            "lastUsedAt": self.last_used_at.isoformat() if self.last_used_at else None,
            "lastUsedBy": self.last_used_by,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a successful code validation — everything needed to mint a session."""

    key_id: str
    code: str
    tier: Tier


@dataclass(frozen=True)
class SessionClaims:
    """Verified contents of a session token."""

    key_id: str
    code: str
    tier: Tier
