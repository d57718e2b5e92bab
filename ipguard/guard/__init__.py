"""Adaptive IP reputation and rate limiting guard.

Provides:
- BlockRegistry: cached view of blocked addresses with background refresh
- ViolationTracker: failed-attempt and rate-limit violation escalation
- RateLimiter: fixed-window guards (default, custom, tiered)
- GuardMiddleware: ordered request pipeline for Starlette/FastAPI apps
- GuardService: wiring and lifecycle from Settings
"""

from .config import (
    CUSTOM_LIMIT_MESSAGE,
    DEFAULT_LIMIT_MESSAGE,
    SYSTEM_ACTOR,
    GuardConfig,
    RateLimitConfig,
    RateLimitOptions,
    RegistryConfig,
    Tier,
    TierLimit,
    ViolationConfig,
)
from .errors import (
    AddressBlocked,
    GuardError,
    GuardRejection,
    InvalidAddress,
    NotificationFailure,
    RateLimitExceeded,
    StoreUnavailable,
)
from .models import BlockedAddress, BlockedAddressPage, FailedAttemptEvent, RateLimitViolationEvent
from .notifications import (
    LogNotificationChannel,
    Notification,
    NotificationChannel,
    NotificationField,
    Notifier,
    Severity,
    WebhookNotificationChannel,
)
from .addresses import canonicalize_address, resolve_client_address
from .middleware import BlockGuard, GuardMiddleware, RequestGuard, install_guard
from .registry import BlockRegistry
from .violations import ViolationTracker
from .limiter import FixedWindowCounter, RateLimiter, RateLimitGuard, TieredRateLimitGuard
from .service import GuardService

__all__ = [
    # Components
    "BlockRegistry",
    "GuardService",
    "RateLimiter",
    "ViolationTracker",
    # Pipeline
    "BlockGuard",
    "FixedWindowCounter",
    "GuardMiddleware",
    "RateLimitGuard",
    "RequestGuard",
    "TieredRateLimitGuard",
    "canonicalize_address",
    "install_guard",
    "resolve_client_address",
    # Config
    "CUSTOM_LIMIT_MESSAGE",
    "DEFAULT_LIMIT_MESSAGE",
    "SYSTEM_ACTOR",
    "GuardConfig",
    "RateLimitConfig",
    "RateLimitOptions",
    "RegistryConfig",
    "Tier",
    "TierLimit",
    "ViolationConfig",
    # Errors
    "AddressBlocked",
    "GuardError",
    "GuardRejection",
    "InvalidAddress",
    "NotificationFailure",
    "RateLimitExceeded",
    "StoreUnavailable",
    # Records
    "BlockedAddress",
    "BlockedAddressPage",
    "FailedAttemptEvent",
    "RateLimitViolationEvent",
    # Notifications
    "LogNotificationChannel",
    "Notification",
    "NotificationChannel",
    "NotificationField",
    "Notifier",
    "Severity",
    "WebhookNotificationChannel",
]
