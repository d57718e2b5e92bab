"""Persistent store interface used by the guard.

The guard treats the store as the source of truth and its own memory as a
projection. Every call made from the guard goes through ``call_store`` so a
slow or unreachable store surfaces as ``StoreUnavailable`` within a bounded
time instead of stalling a request or a background loop.
"""

from __future__ import annotations

import abc
import asyncio
from datetime import datetime
from typing import Awaitable, List, Optional, TypeVar

from ipguard.guard.errors import StoreUnavailable
from ipguard.guard.models import BlockedAddress

T = TypeVar("T")


async def call_store(operation: str, awaitable: Awaitable[T], timeout: Optional[float]) -> T:
    """Await a store call with a timeout, normalizing failures."""
    try:
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.CancelledError:
        raise
    except StoreUnavailable:
        raise
    except asyncio.TimeoutError as e:
        raise StoreUnavailable(operation, e) from e
    except Exception as e:
        raise StoreUnavailable(operation, e) from e


class GuardStore(abc.ABC):
    """CRUD surface the guard needs from its persistent store."""

    # Blocked addresses

    @abc.abstractmethod
    async def upsert_blocked_address(
        self,
        address: str,
        blocked_by: str,
        reason: Optional[str],
        expires_at: Optional[datetime],
    ) -> BlockedAddress:
        """Create the record or overwrite reason/actor/expiry and reactivate it."""

    @abc.abstractmethod
    async def find_active_blocked_addresses(self, as_of: datetime) -> List[BlockedAddress]:
        """Active records with no expiry or an expiry after ``as_of``."""

    @abc.abstractmethod
    async def find_expired_active_blocked_addresses(self, as_of: datetime) -> List[BlockedAddress]:
        """Active records whose expiry is at or before ``as_of``."""

    @abc.abstractmethod
    async def deactivate_blocked_address(self, address: str) -> bool:
        """Flip is_active off. Returns False when there was no active record."""

    @abc.abstractmethod
    async def list_active_blocked_addresses_paged(self, page: int, size: int) -> List[BlockedAddress]:
        """Active records, newest first; ``page`` is 1-based."""

    # Abuse events

    @abc.abstractmethod
    async def insert_failed_attempt(self, address: str, occurred_at: datetime) -> None:
        ...

    @abc.abstractmethod
    async def count_failed_attempts(self, address: str, since: datetime) -> int:
        ...

    @abc.abstractmethod
    async def insert_rate_limit_violation(self, address: str, endpoint: str, occurred_at: datetime) -> None:
        ...

    @abc.abstractmethod
    async def count_rate_limit_violations(self, address: str, since: datetime) -> int:
        ...

    async def initialize(self) -> None:
        """Prepare the backing storage (create tables, etc.)."""
        return None

    async def close(self) -> None:
        return None


__all__ = ["GuardStore", "call_store"]
