"""Process-local guard store.

Keeps the same semantics as the SQL store (one record per address,
append-only events) without a database. Suitable for a single process
and for tests; nothing survives a restart.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, List, Optional, Tuple

from ipguard.guard.models import BlockedAddress, FailedAttemptEvent, RateLimitViolationEvent
from .store import GuardStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryGuardStore(GuardStore):
    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or _utcnow
        self._lock = Lock()
        # Insertion order doubles as a tiebreak for equal created_at values
        self._blocks: Dict[str, Tuple[int, BlockedAddress]] = {}
        self._seq = 0
        self.failed_attempts: List[FailedAttemptEvent] = []
        self.violations: List[RateLimitViolationEvent] = []

    def get(self, address: str) -> Optional[BlockedAddress]:
        with self._lock:
            entry = self._blocks.get(address)
            return entry[1] if entry else None

    def records(self) -> List[BlockedAddress]:
        with self._lock:
            return [record for _, record in self._blocks.values()]

    async def upsert_blocked_address(
        self,
        address: str,
        blocked_by: str,
        reason: Optional[str],
        expires_at: Optional[datetime],
    ) -> BlockedAddress:
        with self._lock:
            existing = self._blocks.get(address)
            if existing is None:
                self._seq += 1
                record = BlockedAddress(
                    address=address,
                    reason=reason,
                    blocked_by=blocked_by,
                    expires_at=expires_at,
                    is_active=True,
                    created_at=self._clock(),
                )
                self._blocks[address] = (self._seq, record)
            else:
                seq, previous = existing
                record = dataclasses.replace(
                    previous,
                    reason=reason,
                    blocked_by=blocked_by,
                    expires_at=expires_at,
                    is_active=True,
                )
                self._blocks[address] = (seq, record)
            return record

    async def find_active_blocked_addresses(self, as_of: datetime) -> List[BlockedAddress]:
        with self._lock:
            return [r for _, r in self._blocks.values() if r.is_effective(as_of)]

    async def find_expired_active_blocked_addresses(self, as_of: datetime) -> List[BlockedAddress]:
        with self._lock:
            return [r for _, r in self._blocks.values() if r.is_active and r.is_expired(as_of)]

    async def deactivate_blocked_address(self, address: str) -> bool:
        with self._lock:
            existing = self._blocks.get(address)
            if existing is None or not existing[1].is_active:
                return False
            seq, record = existing
            self._blocks[address] = (seq, dataclasses.replace(record, is_active=False))
            return True

    async def list_active_blocked_addresses_paged(self, page: int, size: int) -> List[BlockedAddress]:
        with self._lock:
            active = [(seq, r) for seq, r in self._blocks.values() if r.is_active]
        active.sort(key=lambda item: (item[1].created_at, item[0]), reverse=True)
        start = (page - 1) * size
        return [r for _, r in active[start:start + size]]

    async def insert_failed_attempt(self, address: str, occurred_at: datetime) -> None:
        with self._lock:
            self.failed_attempts.append(FailedAttemptEvent(address=address, occurred_at=occurred_at))

    async def count_failed_attempts(self, address: str, since: datetime) -> int:
        with self._lock:
            return sum(1 for e in self.failed_attempts if e.address == address and e.occurred_at >= since)

    async def insert_rate_limit_violation(self, address: str, endpoint: str, occurred_at: datetime) -> None:
        with self._lock:
            self.violations.append(
                RateLimitViolationEvent(address=address, endpoint=endpoint, occurred_at=occurred_at)
            )

    async def count_rate_limit_violations(self, address: str, since: datetime) -> int:
        with self._lock:
            return sum(1 for e in self.violations if e.address == address and e.occurred_at >= since)


__all__ = ["MemoryGuardStore"]
