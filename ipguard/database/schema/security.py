"""Guard tables: blocked addresses and the abuse events counted against them."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class BlockedAddressRecord(Base):
    """One row per canonical client address.

    Re-blocking updates the existing row; unblocking sets is_active to false.
    Rows are never deleted. Loaded into memory by the block registry.
    """
    __tablename__ = "guard_blocked_address"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    address: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Canonical client address (after proxy header resolution)",
    )
    reason: Mapped[str | None] = mapped_column(
        String(255),
        comment="Human-readable reason; never returned to the blocked caller",
    )
    blocked_by: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Admin actor id, or 'system' for automatic blocks",
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        comment="When the block lapses (NULL = indefinite)",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("address", name="uq_guard_blocked_address_address"),
        Index(
            "ix_guard_blocked_address_active_expires",
            "expires_at",
            postgresql_where=text("is_active"),
        ),
        Index("ix_guard_blocked_address_created", "created_at"),
    )


class FailedAttemptRecord(Base):
    """Authentication failure from an address. Append-only."""
    __tablename__ = "guard_failed_attempt"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(64), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_guard_failed_attempt_address_time", "address", "occurred_at"),
    )


class RateLimitViolationRecord(Base):
    """Rejected over-limit request from an address. Append-only."""
    __tablename__ = "guard_rate_limit_violation"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(64), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_guard_rate_limit_violation_address_time", "address", "occurred_at"),
    )


__all__ = [
    "BlockedAddressRecord",
    "FailedAttemptRecord",
    "RateLimitViolationRecord",
]
