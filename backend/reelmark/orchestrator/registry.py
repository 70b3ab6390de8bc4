"""
In-flight request bookkeeping for the orchestrator.

Each request runs as a task under a string key so it can be cancelled
individually (a superseded theme) or all at once (a new video).
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, Optional

logger = logging.getLogger(__name__)


class RequestTimeout(Exception):
    def __init__(self, key: str, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Request '{key}' timed out after {timeout:g}s")


class RequestRegistry:
    """Owns cancellable, optionally time-limited request tasks."""

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}
        self._sequence = 0

    def next_request_id(self) -> int:
        self._sequence += 1
        return self._sequence

    def reset_sequence(self) -> None:
        self._sequence = 0

    def is_pending(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    @property
    def pending_keys(self):
        return [key for key, task in self._tasks.items() if not task.done()]

    async def run(self, key: str, coro: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        """Await ``coro`` under ``key``.

        Raises ``RequestTimeout`` when ``timeout`` elapses and
        ``asyncio.CancelledError`` when the key is cancelled. Reusing a
        live key cancels the earlier request.
        """
        self.cancel(key)

        async def guarded():
            if timeout is None:
                return await coro
            try:
                return await asyncio.wait_for(coro, timeout)
            except asyncio.TimeoutError:
                raise RequestTimeout(key, timeout)

        task = asyncio.ensure_future(guarded())
        self._tasks[key] = task
        try:
            return await task
        finally:
            if self._tasks.get(key) is task:
                del self._tasks[key]

    def cancel(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug(f"Cancelled request {key}")
        return True

    def cancel_all(self) -> int:
        cancelled = 0
        for key in list(self._tasks):
            if self.cancel(key):
                cancelled += 1
        return cancelled
