"""Outbound alerts for block, unblock and violation events.

Provides:
- Notification / NotificationField: fixed alert payload
- NotificationChannel: delivery interface
- WebhookNotificationChannel: Discord-compatible webhook over httpx
- LogNotificationChannel: logs alerts when no webhook is configured
- Notifier: fire-and-forget dispatch that never raises
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, Optional, Tuple

import bittensor as bt
import httpx

from ipguard.shared.log_colors import LogColors
from ipguard.shared.tasks import TaskSet
from .errors import NotificationFailure


class Severity(IntEnum):
    """Embed colors used by the guard's alerts."""

    CRITICAL = 0xFF0000  # red
    WARNING = 0xFFA500  # orange
    RESOLVED = 0x00FF00  # green


@dataclass(frozen=True)
class NotificationField:
    name: str
    value: str
    inline: bool = True


@dataclass(frozen=True)
class Notification:
    title: str
    message: str
    color: int = Severity.CRITICAL
    fields: Tuple[NotificationField, ...] = ()
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not self.title.strip():
            raise ValueError("Notification title must be a non-empty string")
        if not self.message.strip():
            raise ValueError("Notification message must be a non-empty string")


class NotificationChannel(abc.ABC):
    """Delivers a single alert. Implementations raise NotificationFailure."""

    @abc.abstractmethod
    async def send(self, notification: Notification) -> None:
        ...

    async def aclose(self) -> None:
        return None


class LogNotificationChannel(NotificationChannel):
    async def send(self, notification: Notification) -> None:
        bt.logging.info({
            "notification": {
                "title": notification.title,
                "message": notification.message,
                "fields": {f.name: f.value for f in notification.fields},
            }
        })


class WebhookNotificationChannel(NotificationChannel):
    """Posts alerts as a single embed to a Discord-compatible webhook."""

    def __init__(
        self,
        webhook_url: str,
        *,
        username: str = "IP Guard",
        content: str = "🔔 Notification Alert",
        avatar_url: Optional[str] = None,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not webhook_url:
            raise ValueError("webhook_url is required")
        self.webhook_url = webhook_url
        self.username = username
        self.content = content
        self.avatar_url = avatar_url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def build_payload(self, notification: Notification) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "content": self.content,
            "username": self.username,
            "tts": False,
            "embeds": [
                {
                    "title": notification.title,
                    "description": notification.message,
                    "color": int(notification.color),
                    "fields": [
                        {"name": f.name, "value": f.value, "inline": f.inline}
                        for f in notification.fields
                    ],
                    "timestamp": notification.created_at.isoformat(),
                }
            ],
        }
        if self.avatar_url:
            payload["avatar_url"] = self.avatar_url
        return payload

    async def send(self, notification: Notification) -> None:
        try:
            response = await self._get_client().post(
                self.webhook_url,
                json=self.build_payload(notification),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationFailure(
                f"webhook rejected notification: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise NotificationFailure(f"webhook delivery failed: {e!r}") from e

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class Notifier:
    """Fire-and-forget wrapper around a channel.

    ``dispatch`` schedules delivery and returns immediately; delivery errors
    are logged and never reach the caller of block/unblock.
    """

    def __init__(self, channel: Optional[NotificationChannel] = None):
        self.channel = channel or LogNotificationChannel()
        self._tasks = TaskSet("notifier")

    async def deliver(self, notification: Notification) -> bool:
        """Send now. Returns False instead of raising on failure."""
        try:
            await self.channel.send(notification)
            return True
        except Exception as e:
            bt.logging.warning(
                f"{LogColors.NOTIFY_LABEL} notification_failed: "
                f"title={notification.title!r}, error={e}"
            )
            return False

    def dispatch(self, notification: Notification) -> None:
        self._tasks.spawn(self.deliver(notification), name=f"notify:{notification.title}")

    async def drain(self, timeout: Optional[float] = None) -> None:
        await self._tasks.drain(timeout=timeout)

    async def aclose(self) -> None:
        await self.drain(timeout=5.0)
        self._tasks.cancel()
        await self.channel.aclose()


__all__ = [
    "LogNotificationChannel",
    "Notification",
    "NotificationChannel",
    "NotificationField",
    "Notifier",
    "Severity",
    "WebhookNotificationChannel",
]
