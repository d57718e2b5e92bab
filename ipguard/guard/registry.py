"""In-memory view of blocked addresses, reconciled against the store.

Provides:
- O(1) lock-free ``is_blocked`` reads for the request hot path
- Store-first ``block`` / ``unblock`` that update the view immediately
- Scheduled full refresh and expired-block sweep loops
- Best-effort notifications for every state change
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Tuple

import bittensor as bt

from ipguard.database.store import GuardStore, call_store
from ipguard.shared.log_colors import LogColors
from .addresses import canonicalize_address
from .config import RegistryConfig
from .errors import StoreUnavailable
from .middleware import BlockGuard, RequestGuard
from .models import BlockedAddress, BlockedAddressPage
from .notifications import Notification, NotificationField, Notifier, Severity


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BlockRegistry:
    """Process-wide cache of blocked addresses.

    The cache is a frozenset swapped by reference: readers never take the
    lock, writers rebuild the set under it. Mutations made while a refresh
    query is in flight are journaled and replayed on top of the loaded set
    so the swap cannot drop a fresh block or resurrect a fresh unblock.
    """

    def __init__(
        self,
        store: GuardStore,
        notifier: Optional[Notifier] = None,
        config: Optional[RegistryConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.notifier = notifier or Notifier()
        self.config = config or RegistryConfig()
        self._clock = clock or _utcnow
        self._lock = Lock()

        self._blocked: FrozenSet[str] = frozenset()
        self.last_synced_at: Optional[datetime] = None

        # address -> (sequence, blocked) for mutations during a refresh
        self._journal: Dict[str, Tuple[int, bool]] = {}
        self._seq = 0
        self._refreshes_in_flight = 0

        self._running = False
        self._loop_tasks: List[asyncio.Task] = []

    # -------------------------------------------------------------------------
    # Hot path
    # -------------------------------------------------------------------------

    def is_blocked(self, address: str) -> bool:
        return address in self._blocked

    def blocked_addresses(self) -> FrozenSet[str]:
        return self._blocked

    def get_middleware(self) -> RequestGuard:
        """Pipeline stage rejecting blocked callers with 403."""
        return BlockGuard(self, trust_forwarded_for=self.config.trust_forwarded_for)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def _apply(self, address: str, blocked: bool) -> None:
        with self._lock:
            if blocked:
                self._blocked = self._blocked | {address}
            else:
                self._blocked = self._blocked - {address}
            if self._refreshes_in_flight:
                self._seq += 1
                self._journal[address] = (self._seq, blocked)

    def _store_call(self, operation: str, awaitable: Awaitable[Any]) -> Awaitable[Any]:
        return call_store(operation, awaitable, self.config.store_timeout_sec)

    async def block(
        self,
        address: str,
        actor: str,
        reason: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> BlockedAddress:
        """Persist a block and make it effective immediately.

        Re-blocking refreshes reason, actor and expiry on the existing record.
        Raises StoreUnavailable if the store write fails; the cache is left
        unchanged in that case.
        """
        address = canonicalize_address(address)
        if expires_at is not None and expires_at.tzinfo is None:
            # Naive expiries are taken as UTC
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        record = await self._store_call(
            "upsert_blocked_address",
            self.store.upsert_blocked_address(address, actor, reason, expires_at),
        )

        if not record.is_effective(self._clock()):
            bt.logging.info({
                "block_registry_block": {
                    "address": address,
                    "expires": expires_at.isoformat(),
                    "effective": False,
                }
            })
            return record

        self._apply(address, True)

        bt.logging.warning({
            "block_registry_block": {
                "address": address,
                "blocked_by": actor,
                "reason": reason or "not specified",
                "expires": expires_at.isoformat() if expires_at else "never",
            }
        })

        self.notifier.dispatch(Notification(
            title="IP Blocked",
            message=f"The IP address {address} has been blocked.",
            color=Severity.CRITICAL,
            fields=(
                NotificationField("Blocked By", actor),
                NotificationField("Reason", reason or "Not specified"),
                NotificationField("Expires At", expires_at.isoformat() if expires_at else "Indefinite"),
            ),
        ))
        return record

    async def unblock(self, address: str) -> bool:
        """Deactivate a block. Returns False if the address was not blocked."""
        address = canonicalize_address(address)
        deactivated = await self._store_call(
            "deactivate_blocked_address",
            self.store.deactivate_blocked_address(address),
        )
        was_cached = address in self._blocked
        self._apply(address, False)

        if not deactivated and not was_cached:
            bt.logging.debug({"block_registry_unblock": {"address": address, "noop": True}})
            return False

        bt.logging.info({"block_registry_unblock": {"address": address}})
        self.notifier.dispatch(Notification(
            title="IP Unblocked",
            message=f"The IP address {address} has been unblocked.",
            color=Severity.RESOLVED,
            fields=(NotificationField("IP Address", address),),
        ))
        return True

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    async def refresh(self) -> bool:
        """Replace the cache with the store's active, unexpired blocks.

        Returns False (and keeps the current cache) when the store fails.
        """
        as_of = self._clock()
        with self._lock:
            self._refreshes_in_flight += 1
            started_seq = self._seq

        try:
            records = await self._store_call(
                "find_active_blocked_addresses",
                self.store.find_active_blocked_addresses(as_of),
            )
        except StoreUnavailable as e:
            with self._lock:
                self._finish_refresh()
            bt.logging.warning(
                f"{LogColors.STORE_LABEL} block_registry_refresh_failed: "
                f"error={e}, cached={len(self._blocked)}"
            )
            return False

        with self._lock:
            loaded = {record.address for record in records}
            for address, (seq, blocked) in self._journal.items():
                if seq <= started_seq:
                    continue
                if blocked:
                    loaded.add(address)
                else:
                    loaded.discard(address)
            self._blocked = frozenset(loaded)
            self.last_synced_at = self._clock()
            self._finish_refresh()

        bt.logging.info({
            "block_registry_refresh": {
                "blocked": len(self._blocked),
                "last_synced_at": self.last_synced_at.isoformat(),
            }
        })
        return True

    def _finish_refresh(self) -> None:
        # Caller holds self._lock
        self._refreshes_in_flight -= 1
        if not self._refreshes_in_flight:
            self._journal.clear()

    async def sweep_expired(self) -> int:
        """Unblock every active block whose expiry has passed."""
        as_of = self._clock()
        try:
            expired = await self._store_call(
                "find_expired_active_blocked_addresses",
                self.store.find_expired_active_blocked_addresses(as_of),
            )
        except StoreUnavailable as e:
            bt.logging.warning(f"{LogColors.STORE_LABEL} block_registry_sweep_failed: error={e}")
            return 0

        unblocked = 0
        for record in expired:
            try:
                if await self.unblock(record.address):
                    unblocked += 1
            except StoreUnavailable as e:
                bt.logging.warning(
                    f"{LogColors.STORE_LABEL} block_registry_sweep_unblock_failed: "
                    f"address={record.address}, error={e}"
                )

        if unblocked:
            bt.logging.info({"block_registry_sweep": {"expired_unblocked": unblocked}})
        return unblocked

    async def list_blocked(self, page: int = 1, page_size: int = 20) -> BlockedAddressPage:
        """Active blocks from the store, newest first. ``page`` is 1-based."""
        if page < 1:
            raise ValueError("page must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        records = await self._store_call(
            "list_active_blocked_addresses_paged",
            self.store.list_active_blocked_addresses_paged(page, page_size),
        )
        return BlockedAddressPage(items=tuple(records), page=page, page_size=page_size)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the refresh and sweep loops on the running event loop."""
        if self._running:
            bt.logging.debug({"block_registry": "already_running"})
            return
        self._running = True
        self._loop_tasks = [
            asyncio.create_task(
                self._run_periodic("refresh", self.refresh, self.config.refresh_interval_sec, immediate=True),
                name="block_registry_refresh",
            ),
            asyncio.create_task(
                self._run_periodic("sweep", self.sweep_expired, self.config.sweep_interval_sec, immediate=False),
                name="block_registry_sweep",
            ),
        ]
        bt.logging.info({"block_registry": "started"})

    async def stop(self) -> None:
        self._running = False
        tasks, self._loop_tasks = self._loop_tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.notifier.drain(timeout=5.0)
        bt.logging.info({"block_registry": "stopped"})

    async def _run_periodic(
        self,
        name: str,
        tick: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        *,
        immediate: bool,
    ) -> None:
        bt.logging.info({
            "block_registry_loop": {
                "name": name,
                "interval_seconds": interval_seconds,
                "status": "starting",
            }
        })
        try:
            if not immediate:
                await asyncio.sleep(interval_seconds)
            while self._running:
                try:
                    await tick()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    # refresh/sweep already absorb store errors; this is a bug guard
                    bt.logging.error(
                        f"{LogColors.GUARD_LABEL} block_registry_loop_error: name={name}, error={e!r}"
                    )
                await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            pass
        bt.logging.info({"block_registry_loop": {"name": name, "status": "stopped"}})

    # -------------------------------------------------------------------------
    # Stats
    # -------------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        return {
            "blocked_addresses": len(self._blocked),
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "running": self._running,
        }


__all__ = ["BlockRegistry"]
