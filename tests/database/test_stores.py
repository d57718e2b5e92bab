"""Tests for the guard stores and the store call wrapper."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.sql.elements import TextClause

from ipguard.database.memory_store import MemoryGuardStore
from ipguard.database.sql_store import SqlGuardStore
from ipguard.database.store import call_store
from ipguard.guard.errors import StoreUnavailable
from ipguard.guard.models import BlockedAddress


NOW = datetime(2026, 5, 1, 10, 0, tzinfo=timezone.utc)


class TestCallStore:
    """Tests for timeout and error normalization."""

    @pytest.mark.asyncio
    async def test_returns_result(self):
        """Test that successful calls pass their result through."""

        async def ok():
            return 42

        assert await call_store("op", ok(), timeout=1.0) == 42

    @pytest.mark.asyncio
    async def test_timeout_becomes_store_unavailable(self):
        """Test that a slow call raises StoreUnavailable."""
        with pytest.raises(StoreUnavailable) as exc_info:
            await call_store("slow_op", asyncio.sleep(5), timeout=0.01)

        assert exc_info.value.operation == "slow_op"
        assert isinstance(exc_info.value.cause, asyncio.TimeoutError)

    @pytest.mark.asyncio
    async def test_errors_become_store_unavailable(self):
        """Test that driver errors are wrapped."""

        async def boom():
            raise ConnectionError("refused")

        with pytest.raises(StoreUnavailable) as exc_info:
            await call_store("write_op", boom(), timeout=None)

        assert isinstance(exc_info.value.cause, ConnectionError)
        assert "write_op" in str(exc_info.value)


class TestMemoryGuardStore:
    """Tests for the in-process store semantics."""

    @pytest.mark.asyncio
    async def test_upsert_keeps_one_record(self):
        """Test that re-upserting overwrites and reactivates."""
        store = MemoryGuardStore(clock=lambda: NOW)
        await store.upsert_blocked_address("10.0.0.1", "admin", "first", None)
        await store.deactivate_blocked_address("10.0.0.1")

        record = await store.upsert_blocked_address("10.0.0.1", "system", "second", NOW + timedelta(hours=1))

        assert len(store.records()) == 1
        assert record.is_active
        assert record.reason == "second"
        assert record.blocked_by == "system"

    @pytest.mark.asyncio
    async def test_deactivate_reports_change(self):
        """Test that deactivation is True once, then False."""
        store = MemoryGuardStore()
        await store.upsert_blocked_address("10.0.0.1", "admin", None, None)

        assert await store.deactivate_blocked_address("10.0.0.1") is True
        assert await store.deactivate_blocked_address("10.0.0.1") is False
        assert await store.deactivate_blocked_address("10.9.9.9") is False

    @pytest.mark.asyncio
    async def test_active_and_expired_queries(self):
        """Test the split between effective and expired-but-active blocks."""
        store = MemoryGuardStore(clock=lambda: NOW)
        await store.upsert_blocked_address("10.0.0.1", "admin", None, None)
        await store.upsert_blocked_address("10.0.0.2", "admin", None, NOW + timedelta(minutes=5))
        await store.upsert_blocked_address("10.0.0.3", "admin", None, NOW)

        active = await store.find_active_blocked_addresses(NOW)
        expired = await store.find_expired_active_blocked_addresses(NOW)

        assert {r.address for r in active} == {"10.0.0.1", "10.0.0.2"}
        assert [r.address for r in expired] == ["10.0.0.3"]

    @pytest.mark.asyncio
    async def test_event_counts_respect_since(self):
        """Test that counts only include events at or after ``since``."""
        store = MemoryGuardStore()
        await store.insert_failed_attempt("10.0.0.1", NOW - timedelta(hours=2))
        await store.insert_failed_attempt("10.0.0.1", NOW)
        await store.insert_failed_attempt("10.0.0.2", NOW)
        await store.insert_rate_limit_violation("10.0.0.1", "/api", NOW)

        assert await store.count_failed_attempts("10.0.0.1", NOW - timedelta(hours=1)) == 1
        assert await store.count_failed_attempts("10.0.0.1", NOW - timedelta(hours=3)) == 2
        assert await store.count_rate_limit_violations("10.0.0.1", NOW) == 1
        assert await store.count_rate_limit_violations("10.0.0.2", NOW) == 0


def _row(address="10.0.0.1", **overrides):
    row = {
        "address": address,
        "reason": "abuse",
        "blocked_by": "admin",
        "expires_at": None,
        "is_active": True,
        "created_at": NOW,
    }
    row.update(overrides)
    return row


def _database(**kwargs) -> MagicMock:
    database = MagicMock()
    database.read = AsyncMock(return_value=kwargs.get("read", []))
    database.write = AsyncMock(return_value=kwargs.get("write", 1))
    database.create_all = AsyncMock()
    database.dispose = AsyncMock()
    return database


class TestSqlGuardStore:
    """Tests for SQL statements issued through the DBM helpers."""

    @pytest.mark.asyncio
    async def test_upsert_uses_returning(self):
        """Test that upsert writes with RETURNING and maps the row."""
        database = _database(write=[_row()])
        store = SqlGuardStore(database)

        record = await store.upsert_blocked_address("10.0.0.1", "admin", "abuse", None)

        assert record == BlockedAddress(
            address="10.0.0.1",
            blocked_by="admin",
            created_at=NOW,
            reason="abuse",
            expires_at=None,
            is_active=True,
        )
        query = database.write.await_args.args[0]
        kwargs = database.write.await_args.kwargs
        assert isinstance(query, TextClause)
        assert "ON CONFLICT (address)" in query.text
        assert kwargs["return_rows"] is True
        assert kwargs["mappings"] is True
        assert kwargs["params"]["address"] == "10.0.0.1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rowcount,expected", [(1, True), (0, False)])
    async def test_deactivate_reports_rowcount(self, rowcount, expected):
        """Test that deactivate maps affected rows to a bool."""
        store = SqlGuardStore(_database(write=rowcount))

        assert await store.deactivate_blocked_address("10.0.0.1") is expected

    @pytest.mark.asyncio
    async def test_paging_offsets(self):
        """Test LIMIT/OFFSET for 1-based pages."""
        database = _database(read=[_row("10.0.0.2"), _row("10.0.0.1")])
        store = SqlGuardStore(database)

        records = await store.list_active_blocked_addresses_paged(3, 20)

        assert [r.address for r in records] == ["10.0.0.2", "10.0.0.1"]
        assert database.read.await_args.kwargs["params"] == {"limit": 20, "offset": 40}
        assert "ORDER BY created_at DESC" in database.read.await_args.args[0].text

    @pytest.mark.asyncio
    async def test_counts(self):
        """Test that COUNT queries return ints."""
        store = SqlGuardStore(_database(read=[{"n": 4}]))

        assert await store.count_failed_attempts("10.0.0.1", NOW) == 4
        assert await store.count_rate_limit_violations("10.0.0.1", NOW) == 4

    @pytest.mark.asyncio
    async def test_initialize_creates_schema_when_enabled(self):
        """Test that auto_create controls table creation."""
        database = _database()

        await SqlGuardStore(database, auto_create=False).initialize()
        database.create_all.assert_not_awaited()

        await SqlGuardStore(database, auto_create=True).initialize()
        database.create_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_disposes_engine(self):
        """Test that close() releases the pool."""
        database = _database()

        await SqlGuardStore(database).close()

        database.dispose.assert_awaited_once()
