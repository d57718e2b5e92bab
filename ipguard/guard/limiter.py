"""Fixed-window rate limiting with escalation into blocks.

Each guard owns its counter, so a per-route limiter and the global tiered
limiter count independently. Counters live in process memory.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from datetime import timedelta
from threading import Lock
from typing import Callable, Dict, Iterable, Optional, Tuple, Union

from starlette.requests import Request
from starlette.responses import Response
from starlette.middleware.base import RequestResponseEndpoint

import bittensor as bt

from ipguard.shared.log_colors import LogColors
from ipguard.shared.tasks import TaskSet
from .config import DEFAULT_LIMIT_MESSAGE, SYSTEM_ACTOR, RateLimitConfig, RateLimitOptions, Tier
from .errors import AddressBlocked, RateLimitExceeded, StoreUnavailable
from .middleware import RequestGuard
from .registry import BlockRegistry
from .violations import ViolationTracker

TierLookup = Callable[[Request], Union[str, Tier, None]]


def default_tier_lookup(request: Request) -> Union[str, Tier, None]:
    """Tier set on ``request.state.tier`` by upstream auth, if any."""
    return getattr(request.state, "tier", None)


@dataclass
class _Window:
    count: int
    started_at: float


@dataclass(frozen=True)
class WindowDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float  # seconds until the window rolls over

    def headers(self) -> Dict[str, str]:
        return {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(math.ceil(self.reset_after)),
        }


class FixedWindowCounter:
    """Per-key request counter over fixed windows.

    A key's window restarts on the first hit after ``window_ms`` has
    elapsed since it opened. Stale windows are pruned at most once per
    ``cleanup_interval_sec``.
    """

    def __init__(
        self,
        window_ms: int,
        max_requests: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        cleanup_interval_sec: float = 300.0,
    ):
        if window_ms <= 0:
            raise ValueError("window_ms must be > 0")
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        self.window_ms = window_ms
        self.max_requests = max_requests
        self._window_sec = window_ms / 1000.0
        self._clock = clock
        self._cleanup_interval_sec = cleanup_interval_sec
        self._lock = Lock()
        self._windows: Dict[str, _Window] = {}
        self._last_prune = clock()

    def hit(self, key: str) -> WindowDecision:
        now = self._clock()
        with self._lock:
            if now - self._last_prune >= self._cleanup_interval_sec:
                self._prune(now)

            window = self._windows.get(key)
            if window is None or now - window.started_at > self._window_sec:
                window = _Window(count=0, started_at=now)
                self._windows[key] = window
            window.count += 1

            return WindowDecision(
                allowed=window.count <= self.max_requests,
                limit=self.max_requests,
                remaining=max(0, self.max_requests - window.count),
                reset_after=max(0.0, window.started_at + self._window_sec - now),
            )

    def count(self, key: str) -> int:
        window = self._windows.get(key)
        if window is None or self._clock() - window.started_at > self._window_sec:
            return 0
        return window.count

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def _prune(self, now: float) -> None:
        # Caller holds self._lock
        stale = [k for k, w in self._windows.items() if now - w.started_at > self._window_sec]
        for key in stale:
            del self._windows[key]
        self._last_prune = now
        if stale:
            bt.logging.debug({"rate_limit_prune": {"removed": len(stale), "tracked": len(self._windows)}})

    def __len__(self) -> int:
        return len(self._windows)


class RateLimitGuard(RequestGuard):
    """Counts every request by client address against one window."""

    name = "rate_limit"

    def __init__(
        self,
        limiter: "RateLimiter",
        counter: FixedWindowCounter,
        message: str,
        *,
        escalate: bool = True,
        paths: Iterable[str] = (),
        exempt_paths: Iterable[str] = (),
        trust_forwarded_for: bool = True,
    ):
        super().__init__(paths=paths, exempt_paths=exempt_paths, trust_forwarded_for=trust_forwarded_for)
        self.limiter = limiter
        self.counter = counter
        self.message = message
        self.escalate = escalate

    def select(self, request: Request) -> Tuple[FixedWindowCounter, str]:
        return self.counter, self.message

    async def handle(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        address = self.client_address(request)
        counter, message = self.select(request)
        decision = counter.hit(address)
        headers = decision.headers()

        if not decision.allowed:
            bt.logging.warning(
                f"{LogColors.CLIENT_LABEL} rate_limited: "
                f"ip={address}, path={request.url.path}, guard={self.name}, limit={decision.limit}"
            )
            if self.escalate:
                self.limiter.schedule_escalation(address, request.url.path)
            headers["Retry-After"] = str(max(1, math.ceil(decision.reset_after)))
            raise RateLimitExceeded(message, headers=headers)

        response = await call_next(request)
        for key, value in headers.items():
            response.headers[key] = value
        return response


class TieredRateLimitGuard(RateLimitGuard):
    """Rate limit whose window depends on the caller's tier.

    Checks the block cache first so blocked callers never consume budget.
    """

    name = "tiered_rate_limit"

    def __init__(
        self,
        limiter: "RateLimiter",
        tier_lookup: TierLookup,
        default_counter: FixedWindowCounter,
        tier_counters: Dict[str, Tuple[FixedWindowCounter, str]],
        *,
        exempt_paths: Iterable[str] = (),
        trust_forwarded_for: bool = True,
    ):
        super().__init__(
            limiter,
            default_counter,
            DEFAULT_LIMIT_MESSAGE,
            exempt_paths=exempt_paths,
            trust_forwarded_for=trust_forwarded_for,
        )
        self.tier_lookup = tier_lookup
        self.tier_counters = tier_counters

    def select(self, request: Request) -> Tuple[FixedWindowCounter, str]:
        tier = self.tier_lookup(request)
        if isinstance(tier, Tier):
            tier = tier.value
        if isinstance(tier, str) and tier.upper() in self.tier_counters:
            return self.tier_counters[tier.upper()]
        return self.counter, self.message

    async def handle(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        address = self.client_address(request)
        if self.limiter.registry.is_blocked(address):
            raise AddressBlocked()
        return await super().handle(request, call_next)


class RateLimiter:
    """Factory for rate-limit guards sharing one escalation path."""

    def __init__(
        self,
        registry: BlockRegistry,
        tracker: ViolationTracker,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.tracker = tracker
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._tasks = TaskSet("rate_limiter")

    def _counter(self, window_ms: int, max_requests: int) -> FixedWindowCounter:
        return FixedWindowCounter(
            window_ms,
            max_requests,
            clock=self._clock,
            cleanup_interval_sec=self.config.cleanup_interval_sec,
        )

    def default_window(
        self,
        window_ms: Optional[int] = None,
        max_requests: Optional[int] = None,
    ) -> RateLimitGuard:
        return RateLimitGuard(
            self,
            self._counter(
                window_ms or self.config.default_window_ms,
                max_requests or self.config.default_max_requests,
            ),
            DEFAULT_LIMIT_MESSAGE,
            exempt_paths=self.config.exempt_paths,
            trust_forwarded_for=self.registry.config.trust_forwarded_for,
        )

    def custom_window(self, options: RateLimitOptions) -> RateLimitGuard:
        guard = RateLimitGuard(
            self,
            self._counter(options.window_ms, options.max_requests),
            options.message,
            escalate=options.escalate,
            paths=options.paths,
            exempt_paths=self.config.exempt_paths,
            trust_forwarded_for=self.registry.config.trust_forwarded_for,
        )
        guard.name = "custom_rate_limit"
        return guard

    def tiered_guard(self, tier_lookup: Optional[TierLookup] = None) -> TieredRateLimitGuard:
        tier_counters = {
            name.upper(): (
                self._counter(limit.window_ms, limit.max_requests),
                limit.message or DEFAULT_LIMIT_MESSAGE,
            )
            for name, limit in self.config.tiers.items()
        }
        return TieredRateLimitGuard(
            self,
            tier_lookup or default_tier_lookup,
            self._counter(self.config.default_window_ms, self.config.default_max_requests),
            tier_counters,
            exempt_paths=self.config.exempt_paths,
            trust_forwarded_for=self.registry.config.trust_forwarded_for,
        )

    # -------------------------------------------------------------------------
    # Escalation
    # -------------------------------------------------------------------------

    def schedule_escalation(self, address: str, endpoint: str) -> None:
        """Record the violation in the background; the 429 does not wait."""
        self._tasks.spawn(self.escalate(address, endpoint), name=f"rate_limit_escalation:{address}")

    async def escalate(self, address: str, endpoint: str) -> bool:
        """Record a violation and block once the trailing count hits the threshold.

        Returns True when the address was blocked.
        """
        threshold = self.tracker.config.violation_threshold
        try:
            await self.tracker.record_rate_limit_violation(address, endpoint)
            count = await self.tracker.check_and_notify_critical(address)
            if count < threshold or self.registry.is_blocked(address):
                return False
            expires_at = self.tracker.now() + timedelta(seconds=self.tracker.config.auto_block_duration_sec)
            await self.registry.block(
                address,
                SYSTEM_ACTOR,
                f"automatic: {count} rate limit violations",
                expires_at,
            )
        except StoreUnavailable as e:
            bt.logging.warning(
                f"{LogColors.STORE_LABEL} rate_limit_escalation_failed: ip={address}, error={e}"
            )
            return False

        bt.logging.warning(
            f"{LogColors.CLIENT_LABEL} auto_blocked_rate_limit: "
            f"ip={address}, violations={count}, until={expires_at.isoformat()}"
        )
        return True

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for pending escalations and the notifications they queued."""
        await self._tasks.drain(timeout)
        await self.tracker.notifier.drain(timeout)
        if self.registry.notifier is not self.tracker.notifier:
            await self.registry.notifier.drain(timeout)

    def cancel_pending(self) -> None:
        self._tasks.cancel()


__all__ = [
    "FixedWindowCounter",
    "RateLimitGuard",
    "RateLimiter",
    "TierLookup",
    "TieredRateLimitGuard",
    "WindowDecision",
    "default_tier_lookup",
]
