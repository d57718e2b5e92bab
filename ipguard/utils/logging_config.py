"""Logging configuration for the guard.

Configures log filters and handlers to:
- Prevent double-logging from bittensor's Python logger
- Downgrade store driver errors the guard already handles from ERROR to DEBUG
- Add colored labels to differentiate error sources
- Silence SQLAlchemy and httpx request chatter
"""
from __future__ import annotations

import logging as std_logging
import warnings

from ipguard.shared.log_colors import LogColors


class StoreErrorFilter(std_logging.Filter):
    """Labels and downgrades store connectivity errors.

    The registry keeps serving its cached view while the store is down and
    logs one warning per failed tick, so the driver's own tracebacks are
    noise. Only ERROR-level records matching a known pattern are touched.
    """

    STORE_ERROR_PATTERNS = (
        "ConnectionRefusedError",
        "ConnectionDoesNotExistError",
        "CannotConnectNowError",
        "InterfaceError",
        "TooManyConnectionsError",
        "QueuePool limit",
    )

    def filter(self, record: std_logging.LogRecord) -> bool:
        if record.levelno < std_logging.ERROR:
            return True

        msg = str(getattr(record, "msg", ""))
        if any(pattern in msg for pattern in self.STORE_ERROR_PATTERNS):
            record.msg = f"{LogColors.STORE_LABEL} {record.msg}"
            record.levelno = std_logging.DEBUG
            record.levelname = "DEBUG"

        return True


def configure_guard_logging() -> None:
    """Should be called once, before the service starts."""
    for sqla_logger_name in [
        "sqlalchemy",
        "sqlalchemy.engine",
        "sqlalchemy.pool",
        "sqlalchemy.engine.Engine",
    ]:
        sqla_logger = std_logging.getLogger(sqla_logger_name)
        sqla_logger.setLevel(std_logging.CRITICAL)
        sqla_logger.disabled = True
        sqla_logger.handlers = []
        sqla_logger.propagate = False

    # One line per webhook post is too chatty
    for http_logger_name in ("httpx", "httpcore"):
        std_logging.getLogger(http_logger_name).setLevel(std_logging.WARNING)

    # bittensor has its own console handler
    bt_logger = std_logging.getLogger("bittensor")
    bt_logger.propagate = False
    if not any(isinstance(f, StoreErrorFilter) for f in bt_logger.filters):
        bt_logger.addFilter(StoreErrorFilter())

    # Raised when a store call is cancelled by its timeout
    warnings.filterwarnings(
        "ignore",
        message=r"coroutine 'Connection\._cancel' was never awaited",
        category=RuntimeWarning,
    )


__all__ = ["StoreErrorFilter", "configure_guard_logging"]
