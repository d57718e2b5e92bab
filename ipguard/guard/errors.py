"""Guard error taxonomy.

Only ``GuardRejection`` subclasses ever reach an HTTP caller; everything
else is recovered locally or surfaced to admin callers.
"""

from __future__ import annotations

from typing import Dict, Optional

from fastapi.responses import JSONResponse


class GuardError(Exception):
    """Base class for guard errors."""


class StoreUnavailable(GuardError):
    """The persistent store failed or timed out."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause!r}" if cause is not None else ""
        super().__init__(f"store operation '{operation}' failed{detail}")


class NotificationFailure(GuardError):
    """An alert could not be delivered. Always swallowed by the notifier."""


class GuardRejection(GuardError):
    """A request the guard refuses, rendered as a structured JSON body."""

    status_code: int = 400
    error: str = "Bad request"
    default_message: str = "Request rejected"

    def __init__(self, message: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        self.message = message or self.default_message
        self.headers = headers or {}
        super().__init__(self.message)

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content={
                "success": False,
                "error": self.error,
                "message": self.message,
            },
            headers=self.headers or None,
        )


class InvalidAddress(GuardRejection):
    """No client address could be determined for the request."""

    status_code = 400
    error = "Bad request"
    default_message = "Could not determine IP address"


class AddressBlocked(GuardRejection):
    """The client address is blocked. Never carries the block reason."""

    status_code = 403
    error = "Access denied"
    default_message = "Your IP address has been blocked"


class RateLimitExceeded(GuardRejection):
    status_code = 429
    error = "Too many requests"
    default_message = "You have exceeded the allowed request limit"


__all__ = [
    "AddressBlocked",
    "GuardError",
    "GuardRejection",
    "InvalidAddress",
    "NotificationFailure",
    "RateLimitExceeded",
    "StoreUnavailable",
]
