"""Tests for ViolationTracker escalation and alerting."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from ipguard.database.memory_store import MemoryGuardStore
from ipguard.guard.config import SYSTEM_ACTOR, ViolationConfig
from ipguard.guard.notifications import Notification, NotificationChannel, Notifier, Severity
from ipguard.guard.registry import BlockRegistry
from ipguard.guard.violations import FAILED_ATTEMPT_BLOCK_REASON, ViolationTracker


START = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingChannel(NotificationChannel):
    def __init__(self):
        self.sent: List[Notification] = []

    async def send(self, notification: Notification) -> None:
        self.sent.append(notification)

    def titles(self) -> List[str]:
        return [n.title for n in self.sent]


def _make_tracker(**config_kwargs):
    clock = FakeClock(START)
    store = MemoryGuardStore(clock=clock)
    channel = RecordingChannel()
    notifier = Notifier(channel)
    registry = BlockRegistry(store, notifier, clock=clock)
    tracker = ViolationTracker(store, registry, notifier, ViolationConfig(**config_kwargs), clock=clock)
    return tracker, registry, store, channel, clock


class TestFailedAttempts:
    """Tests for failed-attempt escalation."""

    @pytest.mark.asyncio
    async def test_four_attempts_do_not_block(self):
        """Test that attempts below the threshold only record events."""
        tracker, registry, store, _, _ = _make_tracker()

        for _ in range(4):
            assert await tracker.record_failed_attempt("198.51.100.4") is False

        assert not registry.is_blocked("198.51.100.4")
        assert len(store.failed_attempts) == 4

    @pytest.mark.asyncio
    async def test_fifth_attempt_blocks_for_a_day(self):
        """Test that the fifth attempt in 24h creates a system block."""
        tracker, registry, store, channel, _ = _make_tracker()

        results = [await tracker.record_failed_attempt("198.51.100.4") for _ in range(5)]
        await tracker.notifier.drain()

        assert results == [False, False, False, False, True]
        assert registry.is_blocked("198.51.100.4")
        record = store.get("198.51.100.4")
        assert record.blocked_by == SYSTEM_ACTOR
        assert record.reason == FAILED_ATTEMPT_BLOCK_REASON
        assert record.expires_at == START + timedelta(hours=24)

        assert "Automatic IP Block" in channel.titles()
        auto = next(n for n in channel.sent if n.title == "Automatic IP Block")
        assert auto.color == Severity.WARNING

    @pytest.mark.asyncio
    async def test_attempts_outside_window_are_ignored(self):
        """Test that only the trailing window counts toward the threshold."""
        tracker, registry, _, _, clock = _make_tracker()

        for _ in range(4):
            await tracker.record_failed_attempt("198.51.100.4")
        clock.advance(hours=25)

        assert await tracker.record_failed_attempt("198.51.100.4") is False
        assert not registry.is_blocked("198.51.100.4")

    @pytest.mark.asyncio
    async def test_threshold_is_configurable(self):
        """Test that thresholds come from ViolationConfig."""
        tracker, registry, _, _, _ = _make_tracker(failed_attempt_threshold=2, auto_block_duration_sec=60)

        await tracker.record_failed_attempt("198.51.100.4")
        assert await tracker.record_failed_attempt("198.51.100.4") is True
        assert registry.is_blocked("198.51.100.4")

    @pytest.mark.asyncio
    async def test_attempts_are_counted_per_address(self):
        """Test that other addresses do not contribute to the count."""
        tracker, registry, _, _, _ = _make_tracker()

        for i in range(5):
            await tracker.record_failed_attempt(f"198.51.100.{i}")

        assert registry.blocked_addresses() == frozenset()


class TestRateLimitViolations:
    """Tests for rate-limit violation recording and the critical alert."""

    @pytest.mark.asyncio
    async def test_violation_is_persisted_and_reported(self):
        """Test that each violation is stored and produces an alert."""
        tracker, _, store, channel, _ = _make_tracker()

        await tracker.record_rate_limit_violation("198.51.100.4", "/api/data")
        await tracker.notifier.drain()

        assert len(store.violations) == 1
        assert store.violations[0].endpoint == "/api/data"
        alert = channel.sent[0]
        assert alert.title == "Rate Limit Violation"
        assert alert.color == Severity.CRITICAL
        fields = {f.name: f.value for f in alert.fields}
        assert fields["IP Address"] == "198.51.100.4"
        assert fields["Endpoint"] == "/api/data"
        assert fields["Time"] == START.isoformat()

    @pytest.mark.asyncio
    async def test_get_violation_count_has_no_side_effects(self):
        """Test that counting never dispatches an alert."""
        tracker, _, _, channel, _ = _make_tracker()
        for _ in range(3):
            await tracker.record_rate_limit_violation("198.51.100.4", "/api")
        await tracker.notifier.drain()
        channel.sent.clear()

        assert await tracker.get_violation_count("198.51.100.4") == 3
        await tracker.notifier.drain()

        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_critical_alert_at_threshold(self):
        """Test that the critical alert fires only from the third violation."""
        tracker, _, _, channel, _ = _make_tracker()

        await tracker.record_rate_limit_violation("198.51.100.4", "/api")
        await tracker.record_rate_limit_violation("198.51.100.4", "/api")
        assert await tracker.check_and_notify_critical("198.51.100.4") == 2
        await tracker.notifier.drain()
        assert "Critical Rate Limit Violations" not in channel.titles()

        await tracker.record_rate_limit_violation("198.51.100.4", "/api")
        assert await tracker.check_and_notify_critical("198.51.100.4") == 3
        await tracker.notifier.drain()

        critical = [n for n in channel.sent if n.title == "Critical Rate Limit Violations"]
        assert len(critical) == 1
        assert critical[0].color == Severity.WARNING

    @pytest.mark.asyncio
    async def test_violation_count_uses_trailing_window(self):
        """Test that old violations age out of the count."""
        tracker, _, _, _, clock = _make_tracker()
        await tracker.record_rate_limit_violation("198.51.100.4", "/api")
        clock.advance(hours=24, seconds=1)
        await tracker.record_rate_limit_violation("198.51.100.4", "/api")

        assert await tracker.get_violation_count("198.51.100.4") == 1
