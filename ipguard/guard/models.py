"""Records exchanged between the guard and its persistent store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class BlockedAddress:
    """One block record per canonical address.

    Re-blocking overwrites reason, actor and expiry on the same record;
    unblocking flips ``is_active`` and keeps the row as an audit trail.
    """

    address: str
    blocked_by: str
    created_at: datetime
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None  # None = indefinite
    is_active: bool = True

    def is_expired(self, as_of: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= as_of

    def is_effective(self, as_of: datetime) -> bool:
        """Active and not yet past its expiry."""
        return self.is_active and not self.is_expired(as_of)

    def to_dict(self) -> dict:
        return {
            "ip_address": self.address,
            "reason": self.reason,
            "blocked_by": self.blocked_by,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class FailedAttemptEvent:
    address: str
    occurred_at: datetime


@dataclass(frozen=True)
class RateLimitViolationEvent:
    address: str
    endpoint: str
    occurred_at: datetime


@dataclass(frozen=True)
class BlockedAddressPage:
    items: Tuple[BlockedAddress, ...]
    page: int
    page_size: int

    def __len__(self) -> int:
        return len(self.items)


__all__ = [
    "BlockedAddress",
    "BlockedAddressPage",
    "FailedAttemptEvent",
    "RateLimitViolationEvent",
]
