"""Fixed-interval background jobs owned by the application lifespan."""
from __future__ import annotations

import asyncio
import inspect
import logging
from contextlib import suppress
from typing import Any, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Any]


class PeriodicTask:
    """Run ``job`` every ``interval_seconds`` until stopped; a failing run never ends the loop."""

    def __init__(self, name: str, interval_seconds: float, job: Job) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self._job = job
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("Started periodic task %s (every %ss)", self.name, self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Stopped periodic task %s", self.name)

    async def run_once(self) -> Any:
        result = self._job()
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001 - next tick retries
                logger.exception("Periodic task %s failed", self.name)
