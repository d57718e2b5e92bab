"""Fire-and-forget task tracking.

asyncio only keeps weak references to tasks, so anything spawned from a
request path is held here until it finishes. Failures are logged on
completion instead of surfacing as "Task exception was never retrieved".
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional, Set

import bittensor as bt

from ipguard.shared.log_colors import LogColors


class TaskSet:
    """Holds background tasks spawned by one component."""

    def __init__(self, name: str):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name or self.name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            bt.logging.warning(
                f"{LogColors.GUARD_LABEL} background_task_failed: "
                f"owner={self.name}, task={task.get_name()}, error={exc!r}"
            )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for every pending task, including ones spawned while waiting."""
        while self._tasks:
            pending = list(self._tasks)
            done, not_done = await asyncio.wait(pending, timeout=timeout)
            if not_done:
                bt.logging.debug({
                    "task_set": self.name,
                    "drain_timeout": True,
                    "pending": len(not_done),
                })
                return

    def cancel(self) -> None:
        for task in list(self._tasks):
            if not task.done():
                task.cancel()

    def __len__(self) -> int:
        return len(self._tasks)


__all__ = ["TaskSet"]
