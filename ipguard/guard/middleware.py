"""Request pipeline stages and the Starlette middleware that chains them.

Each guard is an ``async (request, call_next) -> Response`` callable, so a
single guard can be mounted with ``BaseHTTPMiddleware(app, dispatch=guard)``
and an ordered list of them with ``GuardMiddleware``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Optional, Sequence, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

import bittensor as bt

from ipguard.shared.log_colors import LogColors
from .addresses import resolve_client_address
from .errors import AddressBlocked, GuardRejection

if TYPE_CHECKING:
    from .limiter import RateLimiter, TierLookup
    from .registry import BlockRegistry


class RequestGuard:
    """Base pipeline stage.

    ``paths`` limits the guard to request paths starting with one of the
    prefixes (empty means all paths). ``exempt_paths`` are exact paths the
    guard lets straight through.
    """

    name = "guard"

    def __init__(
        self,
        *,
        paths: Iterable[str] = (),
        exempt_paths: Iterable[str] = (),
        trust_forwarded_for: bool = True,
    ):
        self.paths: Tuple[str, ...] = tuple(paths)
        self.exempt_paths = frozenset(exempt_paths)
        self.trust_forwarded_for = trust_forwarded_for

    def applies_to(self, path: str) -> bool:
        if path in self.exempt_paths:
            return False
        if self.paths and not any(path.startswith(prefix) for prefix in self.paths):
            return False
        return True

    def client_address(self, request: Request) -> str:
        return resolve_client_address(request, trust_forwarded_for=self.trust_forwarded_for)

    async def __call__(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.applies_to(request.url.path):
            return await call_next(request)
        try:
            return await self.handle(request, call_next)
        except GuardRejection as rejection:
            return rejection.to_response()

    async def handle(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        raise NotImplementedError


class BlockGuard(RequestGuard):
    """Rejects callers whose address is in the registry's block cache."""

    name = "block"

    def __init__(self, registry: "BlockRegistry", *, trust_forwarded_for: bool = True):
        super().__init__(trust_forwarded_for=trust_forwarded_for)
        self.registry = registry

    async def handle(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        address = self.client_address(request)
        if self.registry.is_blocked(address):
            bt.logging.warning(
                f"{LogColors.CLIENT_LABEL} blocked_request_rejected: "
                f"ip={address}, path={request.url.path}"
            )
            raise AddressBlocked()
        return await call_next(request)


def _chain(guard: RequestGuard, downstream: RequestResponseEndpoint) -> Callable[[Request], Awaitable[Response]]:
    async def run(request: Request) -> Response:
        return await guard(request, downstream)
    return run


class GuardMiddleware(BaseHTTPMiddleware):
    """Runs guards in order; the first rejection wins."""

    def __init__(self, app: Any, guards: Sequence[RequestGuard]):
        super().__init__(app)
        self.guards: Tuple[RequestGuard, ...] = tuple(guards)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        handler: RequestResponseEndpoint = call_next
        for guard in reversed(self.guards):
            handler = _chain(guard, handler)
        return await handler(request)


def install_guard(
    app: Any,
    registry: "BlockRegistry",
    limiter: "RateLimiter",
    tier_lookup: Optional["TierLookup"] = None,
    extra_guards: Sequence[RequestGuard] = (),
) -> Tuple[RequestGuard, ...]:
    """Install block check, then any extra guards, then the tiered limiter.

    Blocked callers are rejected before any counter is touched.
    """
    guards = (
        registry.get_middleware(),
        *extra_guards,
        limiter.tiered_guard(tier_lookup),
    )
    app.add_middleware(GuardMiddleware, guards=guards)

    bt.logging.info({
        "guard_middleware": "installed",
        "guards": [guard.name for guard in guards],
    })
    return guards


__all__ = ["BlockGuard", "GuardMiddleware", "RequestGuard", "install_guard"]
