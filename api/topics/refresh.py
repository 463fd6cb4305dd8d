"""
Background refresh registry.

Tracks the fire-and-forget refresh tasks spawned after a cache hit so they
can be bounded, deduplicated per key, observed and cancelled on shutdown.
Refresh failures never reach a caller; they are logged here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Hashable

logger = logging.getLogger(__name__)


class RefreshRegistry:
    def __init__(self, *, timeout_s: float = 60.0, max_pending: int = 32) -> None:
        self.timeout_s = timeout_s
        self.max_pending = max_pending
        self._tasks: dict[Hashable, asyncio.Task[None]] = {}
        self._closed = False

    def pending(self) -> list[Hashable]:
        return list(self._tasks)

    def is_pending(self, key: Hashable) -> bool:
        return key in self._tasks

    def schedule(self, key: Hashable, fn: Callable[[], Awaitable[object]]) -> bool:
        """
        Start `fn()` in the background unless a refresh for `key` is already running.

        Returns True when a new task was started.
        """
        if self._closed:
            logger.warning("topic_refresh_skipped key=%s reason=shutdown", key)
            return False
        if key in self._tasks:
            logger.debug("topic_refresh_skipped key=%s reason=in_flight", key)
            return False
        if len(self._tasks) >= self.max_pending:
            logger.warning("topic_refresh_skipped key=%s reason=queue_full pending=%s", key, len(self._tasks))
            return False

        task = asyncio.create_task(self._run(key, fn))
        self._tasks[key] = task
        task.add_done_callback(lambda t, key=key: self._forget(key, t))
        return True

    async def _run(self, key: Hashable, fn: Callable[[], Awaitable[object]]) -> None:
        # Never raises: this task has no caller to report to.
        try:
            await asyncio.wait_for(fn(), timeout=self.timeout_s)
            logger.info("topic_refresh_complete key=%s", key)
        except asyncio.CancelledError:
            logger.info("topic_refresh_cancelled key=%s", key)
            raise
        except asyncio.TimeoutError:
            logger.error("topic_refresh_timeout key=%s timeout_s=%s", key, self.timeout_s)
        except Exception:
            logger.exception("topic_refresh_failed key=%s", key)

    def _forget(self, key: Hashable, task: asyncio.Task[None]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    async def wait_idle(self) -> None:
        """
        Wait until every refresh scheduled so far has finished.
        """
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """
        Cancel in-flight refreshes and wait for them to unwind.
        """
        self._closed = True
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("topic_refresh_registry_closed cancelled=%s", len(tasks))
