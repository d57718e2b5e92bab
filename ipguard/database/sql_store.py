"""Postgres-backed guard store built on the DBM read/write helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional

from sqlalchemy import text

import bittensor as bt

from ipguard.guard.models import BlockedAddress
from .schema import metadata
from .store import GuardStore

_BLOCK_COLUMNS = "address, reason, blocked_by, expires_at, is_active, created_at"


def _row_to_blocked(row: Mapping[str, Any]) -> BlockedAddress:
    return BlockedAddress(
        address=row["address"],
        reason=row["reason"],
        blocked_by=row["blocked_by"],
        expires_at=row["expires_at"],
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
    )


class SqlGuardStore(GuardStore):
    """GuardStore over the guard_* tables.

    ``database`` is a DBM (or anything with the same async read/write
    signature).
    """

    def __init__(self, database: Any, *, auto_create: bool = False):
        self.database = database
        self.auto_create = auto_create

    async def initialize(self) -> None:
        if not self.auto_create:
            return
        await self.database.create_all(metadata)
        bt.logging.info({"sql_guard_store": "schema_ready"})

    async def close(self) -> None:
        await self.database.dispose()

    async def upsert_blocked_address(
        self,
        address: str,
        blocked_by: str,
        reason: Optional[str],
        expires_at: Optional[datetime],
    ) -> BlockedAddress:
        rows = await self.database.write(
            text(f"""
                INSERT INTO guard_blocked_address
                    (address, reason, blocked_by, expires_at, is_active)
                VALUES (:address, :reason, :blocked_by, :expires_at, TRUE)
                ON CONFLICT (address)
                DO UPDATE SET
                    reason = EXCLUDED.reason,
                    blocked_by = EXCLUDED.blocked_by,
                    expires_at = EXCLUDED.expires_at,
                    is_active = TRUE
                RETURNING {_BLOCK_COLUMNS}
            """),
            params={
                "address": address,
                "reason": reason,
                "blocked_by": blocked_by,
                "expires_at": expires_at,
            },
            return_rows=True,
            mappings=True,
        )
        return _row_to_blocked(rows[0])

    async def find_active_blocked_addresses(self, as_of: datetime) -> List[BlockedAddress]:
        rows = await self.database.read(
            text(f"""
                SELECT {_BLOCK_COLUMNS}
                FROM guard_blocked_address
                WHERE is_active
                  AND (expires_at IS NULL OR expires_at > :as_of)
            """),
            params={"as_of": as_of},
            mappings=True,
        )
        return [_row_to_blocked(row) for row in rows]

    async def find_expired_active_blocked_addresses(self, as_of: datetime) -> List[BlockedAddress]:
        rows = await self.database.read(
            text(f"""
                SELECT {_BLOCK_COLUMNS}
                FROM guard_blocked_address
                WHERE is_active
                  AND expires_at IS NOT NULL
                  AND expires_at <= :as_of
            """),
            params={"as_of": as_of},
            mappings=True,
        )
        return [_row_to_blocked(row) for row in rows]

    async def deactivate_blocked_address(self, address: str) -> bool:
        affected = await self.database.write(
            text("""
                UPDATE guard_blocked_address
                SET is_active = FALSE
                WHERE address = :address AND is_active
            """),
            params={"address": address},
        )
        return bool(affected)

    async def list_active_blocked_addresses_paged(self, page: int, size: int) -> List[BlockedAddress]:
        rows = await self.database.read(
            text(f"""
                SELECT {_BLOCK_COLUMNS}
                FROM guard_blocked_address
                WHERE is_active
                ORDER BY created_at DESC, id DESC
                LIMIT :limit OFFSET :offset
            """),
            params={"limit": size, "offset": (page - 1) * size},
            mappings=True,
        )
        return [_row_to_blocked(row) for row in rows]

    async def insert_failed_attempt(self, address: str, occurred_at: datetime) -> None:
        await self.database.write(
            text("""
                INSERT INTO guard_failed_attempt (address, occurred_at)
                VALUES (:address, :occurred_at)
            """),
            params={"address": address, "occurred_at": occurred_at},
        )

    async def count_failed_attempts(self, address: str, since: datetime) -> int:
        rows = await self.database.read(
            text("""
                SELECT COUNT(*) AS n
                FROM guard_failed_attempt
                WHERE address = :address AND occurred_at >= :since
            """),
            params={"address": address, "since": since},
            mappings=True,
        )
        return int(rows[0]["n"]) if rows else 0

    async def insert_rate_limit_violation(self, address: str, endpoint: str, occurred_at: datetime) -> None:
        await self.database.write(
            text("""
                INSERT INTO guard_rate_limit_violation (address, endpoint, occurred_at)
                VALUES (:address, :endpoint, :occurred_at)
            """),
            params={"address": address, "endpoint": endpoint, "occurred_at": occurred_at},
        )

    async def count_rate_limit_violations(self, address: str, since: datetime) -> int:
        rows = await self.database.read(
            text("""
                SELECT COUNT(*) AS n
                FROM guard_rate_limit_violation
                WHERE address = :address AND occurred_at >= :since
            """),
            params={"address": address, "since": since},
            mappings=True,
        )
        return int(rows[0]["n"]) if rows else 0


__all__ = ["SqlGuardStore"]
