"""Periodic producer of ``processBatch`` requests."""

from __future__ import annotations

import logging

from ..scheduling import IntervalTimer
from ..storage import QueueRepository
from .models import ProcessBatchRequest
from .store import OperationStore, enqueue

logger = logging.getLogger(__name__)


class BatchTrigger:
    """Enqueue a ``processBatch`` request whenever touch events are waiting."""

    def __init__(self, queue: QueueRepository, store: OperationStore, *, interval_seconds: float = 60) -> None:
        self._queue = queue
        self._store = store
        self._timer = IntervalTimer(self.tick, interval_seconds, name="batch trigger")

    def start(self) -> None:
        self._timer.start()

    async def stop(self) -> None:
        await self._timer.stop()

    async def tick(self) -> str | None:
        try:
            if not self._queue.has_queue_files():
                return None
            logger.debug("Queue files detected, writing processBatch request")
            return enqueue(self._store, ProcessBatchRequest())
        except Exception as exc:
            logger.error("Error in batch processing: %s", exc)
            return None


__all__ = ["BatchTrigger"]
