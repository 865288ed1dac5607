"""Fixed-interval asyncio timer used by the background jobs."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class IntervalTimer:
    """Fire ``callback`` every ``interval_seconds`` until stopped.

    Each tick runs as its own task, so a slow callback does not delay the next
    tick; callbacks are expected to guard against overlapping runs themselves.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[object]],
        interval_seconds: float,
        *,
        name: str,
    ) -> None:
        self._callback = callback
        self._interval = interval_seconds
        self._name = name
        self._stopping = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[object]] = set()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        """Schedule the timer on the running event loop."""

        if self.running:
            return
        self._stopping = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run(), name=self._name)
        logger.info("Started %s (%ss interval)", self._name, self._interval)

    async def stop(self) -> None:
        """Stop ticking and wait for in-flight callbacks to finish."""

        if self._loop_task is None:
            return
        self._stopping.set()
        await self._loop_task
        self._loop_task = None
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("Stopped %s", self._name)

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
                return
            except asyncio.TimeoutError:
                pass
            task = asyncio.create_task(self._tick())
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _tick(self) -> None:
        try:
            await self._callback()
        except Exception:
            logger.exception("Unhandled error in %s", self._name)


__all__ = ["IntervalTimer"]
