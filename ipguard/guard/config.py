"""Guard configuration for blocking, escalation and rate limiting."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, Optional, Tuple

if TYPE_CHECKING:
    from ipguard.config.core import GuardSettings


# Actor recorded on blocks created by escalation rather than by an admin
SYSTEM_ACTOR = "system"


class Tier(str, Enum):
    """Caller plan levels that select a rate-limit window."""

    FREE = "FREE"
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"


@dataclass
class RegistryConfig:
    """Configuration for the in-memory block cache and its background loops."""

    refresh_interval_sec: float = 3600.0  # Full reload from the store (1 hour)
    sweep_interval_sec: float = 600.0  # Expired-block sweep (10 minutes)
    store_timeout_sec: float = 5.0  # Upper bound on any single store call
    trust_forwarded_for: bool = True


@dataclass
class ViolationConfig:
    """Thresholds for escalating tracked abuse into a block."""

    failed_attempt_threshold: int = 5
    failed_attempt_window_sec: int = 86400  # 24h
    violation_threshold: int = 3
    violation_window_sec: int = 86400  # 24h
    auto_block_duration_sec: int = 86400  # 24h


@dataclass(frozen=True)
class TierLimit:
    """Fixed-window pair applied to one tier."""

    window_ms: int
    max_requests: int
    message: Optional[str] = None


def _default_tier_limits() -> Dict[str, TierLimit]:
    return {
        Tier.FREE.value: TierLimit(
            window_ms=15 * 60 * 1000,
            max_requests=50,
            message="Free tier limit exceeded (50 requests per 15 minutes)",
        ),
        Tier.BASIC.value: TierLimit(
            window_ms=15 * 60 * 1000,
            max_requests=200,
            message="Basic tier limit exceeded (200 requests per 15 minutes)",
        ),
        Tier.PREMIUM.value: TierLimit(
            window_ms=15 * 60 * 1000,
            max_requests=1000,
            message="Premium tier limit exceeded (1000 requests per 15 minutes)",
        ),
    }


DEFAULT_LIMIT_MESSAGE = "You have exceeded the allowed request limit"
CUSTOM_LIMIT_MESSAGE = "You have exceeded the custom request limit"


@dataclass(frozen=True)
class RateLimitOptions:
    """Caller-supplied window for a per-route limiter.

    ``paths`` scopes the limiter to request paths starting with any of the
    given prefixes; empty means every path.
    """

    window_ms: int
    max_requests: int
    message: str = CUSTOM_LIMIT_MESSAGE
    paths: Tuple[str, ...] = ()
    escalate: bool = True

    def __post_init__(self) -> None:
        if self.window_ms <= 0:
            raise ValueError("window_ms must be > 0")
        if self.max_requests <= 0:
            raise ValueError("max_requests must be > 0")


@dataclass
class RateLimitConfig:
    """Configuration for the fixed-window limiters."""

    default_window_ms: int = 15 * 60 * 1000
    default_max_requests: int = 100
    tiers: Dict[str, TierLimit] = field(default_factory=_default_tier_limits)

    admin_window_ms: int = 60 * 1000
    admin_max_requests: int = 10

    # Paths that never count against a window (health checks, metrics)
    exempt_paths: Tuple[str, ...] = ("/health", "/healthz", "/ready", "/metrics")

    # How often stale windows are pruned from memory
    cleanup_interval_sec: float = 300.0


@dataclass
class GuardConfig:
    """Combined guard configuration."""

    registry: RegistryConfig = field(default_factory=RegistryConfig)
    violations: ViolationConfig = field(default_factory=ViolationConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    @classmethod
    def from_settings(cls, settings: "GuardSettings") -> "GuardConfig":
        return cls(
            registry=RegistryConfig(
                refresh_interval_sec=float(settings.refresh_interval_seconds),
                sweep_interval_sec=float(settings.sweep_interval_seconds),
                store_timeout_sec=float(settings.store_timeout_seconds),
                trust_forwarded_for=settings.trust_forwarded_for,
            ),
            violations=ViolationConfig(
                failed_attempt_threshold=settings.failed_attempt_threshold,
                failed_attempt_window_sec=settings.failed_attempt_window_seconds,
                violation_threshold=settings.violation_threshold,
                violation_window_sec=settings.violation_window_seconds,
                auto_block_duration_sec=settings.auto_block_seconds,
            ),
            rate_limit=RateLimitConfig(
                default_window_ms=settings.default_window_ms,
                default_max_requests=settings.default_max_requests,
                tiers={
                    name.upper(): TierLimit(
                        window_ms=tier.window_ms,
                        max_requests=tier.max_requests,
                        message=tier.message,
                    )
                    for name, tier in settings.tiers.items()
                },
                admin_window_ms=settings.admin_window_ms,
                admin_max_requests=settings.admin_max_requests,
                exempt_paths=tuple(settings.exempt_paths),
            ),
        )


__all__ = [
    "SYSTEM_ACTOR",
    "CUSTOM_LIMIT_MESSAGE",
    "DEFAULT_LIMIT_MESSAGE",
    "GuardConfig",
    "RateLimitConfig",
    "RateLimitOptions",
    "RegistryConfig",
    "Tier",
    "TierLimit",
    "ViolationConfig",
]
