"""Abuse event tracking and escalation into blocks."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

import bittensor as bt

from ipguard.database.store import GuardStore, call_store
from ipguard.shared.log_colors import LogColors
from .addresses import canonicalize_address
from .config import SYSTEM_ACTOR, ViolationConfig
from .notifications import Notification, NotificationField, Notifier, Severity
from .registry import BlockRegistry

FAILED_ATTEMPT_BLOCK_REASON = "automatic: repeated failed attempts"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ViolationTracker:
    """Records failed attempts and rate-limit violations per address.

    Failed attempts escalate here. Rate-limit violations are only counted
    and reported; the limiter decides when to block on them.
    Store failures propagate as StoreUnavailable.
    """

    def __init__(
        self,
        store: GuardStore,
        registry: BlockRegistry,
        notifier: Optional[Notifier] = None,
        config: Optional[ViolationConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.registry = registry
        self.notifier = notifier or registry.notifier
        self.config = config or ViolationConfig()
        self._clock = clock or _utcnow

    def now(self) -> datetime:
        return self._clock()

    def _store_call(self, operation: str, awaitable: Awaitable[Any]) -> Awaitable[Any]:
        return call_store(operation, awaitable, self.registry.config.store_timeout_sec)

    async def record_failed_attempt(self, address: str) -> bool:
        """Record one failed attempt; block the address once the threshold is hit.

        Returns True when this attempt triggered a block.
        """
        address = canonicalize_address(address)
        now = self.now()
        await self._store_call("insert_failed_attempt", self.store.insert_failed_attempt(address, now))

        since = now - timedelta(seconds=self.config.failed_attempt_window_sec)
        count = await self._store_call(
            "count_failed_attempts",
            self.store.count_failed_attempts(address, since),
        )
        bt.logging.debug({"failed_attempt": {"ip": address, "count": count}})

        if count < self.config.failed_attempt_threshold:
            return False

        expires_at = now + timedelta(seconds=self.config.auto_block_duration_sec)
        await self.registry.block(address, SYSTEM_ACTOR, FAILED_ATTEMPT_BLOCK_REASON, expires_at)

        bt.logging.warning(
            f"{LogColors.CLIENT_LABEL} auto_blocked_failed_attempts: "
            f"ip={address}, attempts={count}, until={expires_at.isoformat()}"
        )
        self.notifier.dispatch(Notification(
            title="Automatic IP Block",
            message=f"IP {address} has been automatically blocked due to {count} failed attempts.",
            color=Severity.WARNING,
            fields=(
                NotificationField("IP Address", address),
                NotificationField("Failed Attempts", str(count)),
                NotificationField("Blocked Until", expires_at.isoformat()),
            ),
        ))
        return True

    async def record_rate_limit_violation(self, address: str, endpoint: str) -> None:
        address = canonicalize_address(address)
        now = self.now()
        await self._store_call(
            "insert_rate_limit_violation",
            self.store.insert_rate_limit_violation(address, endpoint, now),
        )
        self.notifier.dispatch(Notification(
            title="Rate Limit Violation",
            message=f"IP {address} has exceeded the rate limit.",
            color=Severity.CRITICAL,
            fields=(
                NotificationField("IP Address", address),
                NotificationField("Endpoint", endpoint),
                NotificationField("Time", now.isoformat()),
            ),
        ))

    async def get_violation_count(self, address: str) -> int:
        """Rate-limit violations for ``address`` in the trailing window."""
        since = self.now() - timedelta(seconds=self.config.violation_window_sec)
        return await self._store_call(
            "count_rate_limit_violations",
            self.store.count_rate_limit_violations(canonicalize_address(address), since),
        )

    async def check_and_notify_critical(self, address: str) -> int:
        """Count violations and alert once the count reaches the threshold."""
        count = await self.get_violation_count(address)
        if count >= self.config.violation_threshold:
            hours = self.config.violation_window_sec // 3600
            self.notifier.dispatch(Notification(
                title="Critical Rate Limit Violations",
                message=f"IP {address} has exceeded rate limits {count} times in the last {hours} hours.",
                color=Severity.WARNING,
                fields=(
                    NotificationField("IP Address", address),
                    NotificationField("Violations", str(count)),
                ),
            ))
        return count


__all__ = ["FAILED_ATTEMPT_BLOCK_REASON", "ViolationTracker"]
