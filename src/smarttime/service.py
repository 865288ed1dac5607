"""Process bootstrap wiring SmartTime's background jobs together."""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from . import __version__
from .config import SmartTimeSettings, get_settings
from .git import CommitError, GitCommitter
from .operations import BatchTrigger, OperationQueueProcessor, OperationStore
from .scheduling import IntervalTimer
from .storage import (
    BatchRepository,
    CollectResult,
    FileLock,
    ProjectRepository,
    QueueRepository,
    TimeReportRepository,
)

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the SmartTime service."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def initialize_storage(settings: SmartTimeSettings) -> None:
    """Create every directory the queues and the archive live in."""

    for directory in settings.directories():
        Path(directory).mkdir(parents=True, exist_ok=True)


class BatchCollectionJob:
    """Periodically fold transient batch files into the per-day archive."""

    def __init__(
        self,
        batches: BatchRepository,
        committer: GitCommitter,
        *,
        interval_seconds: float = 3600,
    ) -> None:
        self._batches = batches
        self._committer = committer
        self._timer = IntervalTimer(self.run_once, interval_seconds, name="batch collection")

    def start(self) -> None:
        self._timer.start()

    async def stop(self) -> None:
        await self._timer.stop()

    async def run_once(self) -> CollectResult | None:
        try:
            result = self._batches.collect_batches()
            if result.collected:
                await self._committer.commit("housekeeping: batch collection")
            return result
        except Exception as exc:
            logger.error("Batch collection failed: %s", exc)
            return None


@dataclass(slots=True)
class SmartTimeService:
    settings: SmartTimeSettings
    committer: GitCommitter
    store: OperationStore
    queue: QueueRepository
    batches: BatchRepository
    processor: OperationQueueProcessor
    trigger: BatchTrigger
    collection: BatchCollectionJob

    def start(self) -> None:
        self.trigger.start()
        self.processor.start()
        self.collection.start()

    async def stop(self) -> None:
        await self.trigger.stop()
        await self.processor.stop()
        await self.collection.stop()


def create_service(
    settings: Optional[SmartTimeSettings] = None,
    committer: GitCommitter | None = None,
    notify: Callable[[str], None] | None = None,
) -> SmartTimeService:
    """Build every component from ``settings`` without starting anything."""

    settings = settings or get_settings()
    committer = committer or GitCommitter(
        settings.data,
        backup_dir=settings.backup,
        executable=settings.git_path,
        export_dir=settings.export_dir,
        export_age_days=settings.export_age_days,
    )

    store = OperationStore(settings.operation_queue, settings.operation_queue_backup)
    queue = QueueRepository(settings.queue, settings.queue_batch, settings.queue_backup)
    batches = BatchRepository(settings.batches)
    processor = OperationQueueProcessor(
        store=store,
        committer=committer,
        queue=queue,
        batches=batches,
        projects=ProjectRepository(settings.data),
        reports=TimeReportRepository(settings.data),
        lock=FileLock(settings.data, max_age_seconds=settings.lock_max_age_seconds),
        max_failures=settings.max_failures,
        interval_seconds=settings.queue_interval_seconds,
        lock_timeout_ms=settings.lock_timeout_ms,
        notify=notify,
    )
    trigger = BatchTrigger(queue, store, interval_seconds=settings.interval_seconds)
    collection = BatchCollectionJob(
        batches,
        committer,
        interval_seconds=settings.collection_interval_seconds,
    )
    return SmartTimeService(
        settings=settings,
        committer=committer,
        store=store,
        queue=queue,
        batches=batches,
        processor=processor,
        trigger=trigger,
        collection=collection,
    )


async def serve(service: SmartTimeService, stop_event: asyncio.Event | None = None) -> None:
    """Initialize storage and git, then run all timers until ``stop_event`` is set."""

    stop_event = stop_event or asyncio.Event()
    initialize_storage(service.settings)
    await service.committer.initialize()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - platform specific
            pass

    service.start()
    try:
        await stop_event.wait()
    finally:
        await service.stop()


def _warn_user(message: str) -> None:
    logging.getLogger("smarttime.notifications").warning("SmartTime: %s", message)


def main() -> None:
    """Entry point for running the SmartTime service via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    try:
        service = create_service(settings, notify=_warn_user)
    except CommitError as exc:
        logger.error("Cannot start SmartTime: %s", exc)
        raise SystemExit(1)

    logger.info(
        "Launching SmartTime service",
        extra={
            "version": __version__,
            "root": str(settings.root),
            "log_level": settings.log_level,
        },
    )
    asyncio.run(serve(service))


if __name__ == "__main__":
    main()
