from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict

from .timeutils import Clock, utcnow

log = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[object]]


class Scheduler:
    """Runs a callback at an absolute instant; one pending timer per key."""

    def schedule(self, key: str, when: datetime, callback: Callback) -> None:
        raise NotImplementedError

    def cancel(self, key: str) -> bool:
        raise NotImplementedError

    def is_scheduled(self, key: str) -> bool:
        raise NotImplementedError


class AsyncioScheduler(Scheduler):
    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}

    def schedule(self, key: str, when: datetime, callback: Callback) -> None:
        self.cancel(key)
        delay = max((when - self._clock()).total_seconds(), 0.0)

        async def waiter() -> None:
            try:
                if delay > 0:
                    await asyncio.sleep(delay)
            except asyncio.CancelledError:
                log.debug("Timer %s cancelled", key)
                raise
            # the callback may reschedule this key, so drop our handle first
            if self._tasks.get(key) is task:
                del self._tasks[key]
            try:
                await callback()
            except Exception:
                log.exception("Scheduled callback %s failed", key)

        task = asyncio.create_task(waiter(), name=f"timer:{key}")
        self._tasks[key] = task

    def cancel(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    def is_scheduled(self, key: str) -> bool:
        return key in self._tasks

    def cancel_all(self) -> None:
        for key in list(self._tasks):
            self.cancel(key)
