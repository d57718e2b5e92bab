"""Wires store, notifier, registry, tracker and limiter from Settings."""

from __future__ import annotations

import os
from typing import Any, Optional, Tuple

import bittensor as bt

from ipguard.config.core import Settings
from ipguard.database.store import GuardStore
from ipguard.shared.log_colors import LogColors
from .config import GuardConfig, RateLimitOptions
from .limiter import RateLimiter, TierLookup
from .middleware import RequestGuard, install_guard
from .notifications import (
    LogNotificationChannel,
    NotificationChannel,
    Notifier,
    WebhookNotificationChannel,
)
from .registry import BlockRegistry
from .violations import ViolationTracker

ADMIN_PREFIX = "/api/v1/admin"
ADMIN_LIMIT_MESSAGE = "Too many requests, please try again later."


def build_store(settings: Settings) -> GuardStore:
    """SQL store when a database URL is configured, else process memory."""
    if not (settings.database_url or os.getenv("DATABASE_URL")):
        from ipguard.database.memory_store import MemoryGuardStore

        bt.logging.warning({"guard_store": "memory", "reason": "no database url configured"})
        return MemoryGuardStore()

    from ipguard.database.dbm import DBM
    from ipguard.database.sql_store import SqlGuardStore

    return SqlGuardStore(DBM.get_manager(settings), auto_create=settings.database.auto_create)


def build_channel(settings: Settings) -> NotificationChannel:
    notifications = settings.notifications
    if not notifications.webhook_url:
        return LogNotificationChannel()
    return WebhookNotificationChannel(
        notifications.webhook_url,
        username=notifications.username,
        content=notifications.content,
        avatar_url=notifications.avatar_url,
        timeout=notifications.timeout_seconds,
    )


class GuardService:
    """Owns the guard components and their lifecycle."""

    def __init__(
        self,
        store: GuardStore,
        notifier: Optional[Notifier] = None,
        config: Optional[GuardConfig] = None,
    ):
        self.config = config or GuardConfig()
        self.store = store
        self.notifier = notifier or Notifier()
        self.registry = BlockRegistry(store, self.notifier, self.config.registry)
        self.tracker = ViolationTracker(store, self.registry, self.notifier, self.config.violations)
        self.limiter = RateLimiter(self.registry, self.tracker, self.config.rate_limit)
        self._started = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: Optional[GuardStore] = None,
        channel: Optional[NotificationChannel] = None,
    ) -> "GuardService":
        return cls(
            store=store or build_store(settings),
            notifier=Notifier(channel or build_channel(settings)),
            config=GuardConfig.from_settings(settings.guard),
        )

    def install(
        self,
        app: Any,
        tier_lookup: Optional[TierLookup] = None,
        *,
        admin_prefix: str = ADMIN_PREFIX,
    ) -> Tuple[RequestGuard, ...]:
        """Block check, admin-scoped limit, then the tiered limit."""
        rate_limit = self.config.rate_limit
        admin_guard = self.limiter.custom_window(RateLimitOptions(
            window_ms=rate_limit.admin_window_ms,
            max_requests=rate_limit.admin_max_requests,
            message=ADMIN_LIMIT_MESSAGE,
            paths=(admin_prefix,),
        ))
        return install_guard(app, self.registry, self.limiter, tier_lookup, extra_guards=(admin_guard,))

    async def start(self) -> None:
        if self._started:
            return
        await self.store.initialize()
        self.registry.start()
        self._started = True
        bt.logging.info(f"{LogColors.SUCCESS_LABEL} guard_service_started: store={type(self.store).__name__}")

    async def stop(self) -> None:
        await self.registry.stop()
        await self.limiter.drain(timeout=5.0)
        self.limiter.cancel_pending()
        await self.notifier.aclose()
        await self.store.close()
        self._started = False
        bt.logging.info({"guard_service": "stopped"})

    async def drain(self, timeout: Optional[float] = None) -> None:
        await self.limiter.drain(timeout)


__all__ = ["ADMIN_PREFIX", "GuardService", "build_channel", "build_store"]
