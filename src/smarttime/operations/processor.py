"""Operation queue processor: drains pending requests under the data lock."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from ..errors import InvalidRequestError
from ..git import GitCommitter
from ..scheduling import IntervalTimer
from ..storage import (
    BatchRepository,
    FileLock,
    ProjectRepository,
    QueueRepository,
    TimeReportRepository,
    group_queue_entries,
)
from .models import (
    HousekeepingRequest,
    InvalidRequest,
    OperationRequest,
    ProcessBatchRequest,
    ProjectChangeRequest,
    UpdateProjectsRequest,
    WriteTimeReportRequest,
    describe_request,
)
from .store import OperationStore, enqueue

logger = logging.getLogger(__name__)

DEFAULT_MAX_FAILURES = 5
DEFAULT_INTERVAL_SECONDS = 10.0
DEFAULT_LOCK_TIMEOUT_MS = 1000


class FailureTracker:
    """Consecutive failure counts per request file, kept for the process lifetime."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}

    def increment(self, key: str) -> int:
        count = self._counts.get(key, 0) + 1
        self._counts[key] = count
        return count

    def get(self, key: str) -> int:
        return self._counts.get(key, 0)

    def clear(self, key: str) -> None:
        self._counts.pop(key, None)

    def __len__(self) -> int:
        return len(self._counts)


@dataclass(slots=True)
class DrainResult:
    """What a single drain did."""

    pending: int = 0
    processed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    quarantined: list[str] = field(default_factory=list)
    skipped: str | None = None


class OperationQueueProcessor:
    """Apply pending operation requests one at a time, in arrival order.

    A drain holds the data lock for all requests it applies. Failed requests
    stay in place and are retried on the next drain until ``max_failures`` is
    reached, at which point they are moved to the backup directory.
    """

    def __init__(
        self,
        *,
        store: OperationStore,
        committer: GitCommitter,
        queue: QueueRepository,
        batches: BatchRepository,
        projects: ProjectRepository,
        reports: TimeReportRepository,
        lock: FileLock,
        max_failures: int = DEFAULT_MAX_FAILURES,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS,
        failures: FailureTracker | None = None,
        notify: Callable[[str], None] | None = None,
    ) -> None:
        self._store = store
        self._committer = committer
        self._queue = queue
        self._batches = batches
        self._projects = projects
        self._reports = reports
        self._lock = lock
        self._max_failures = max_failures
        self._lock_timeout_ms = lock_timeout_ms
        self._failures = failures or FailureTracker()
        self._notify = notify
        self._processing = False
        self._housekeeping_queued = False
        self._timer = IntervalTimer(self.process_queue, interval_seconds, name="operation queue processor")

    @property
    def failures(self) -> FailureTracker:
        return self._failures

    @property
    def store(self) -> OperationStore:
        return self._store

    def start(self) -> None:
        self._timer.start()

    async def stop(self) -> None:
        await self._timer.stop()

    def enqueue(self, request: OperationRequest) -> str:
        return enqueue(self._store, request)

    async def process_queue(self) -> DrainResult:
        """Run one drain; never raises."""

        if self._processing:
            logger.debug("Drain already in progress, skipping tick")
            return DrainResult(skipped="busy")

        self._processing = True
        self._housekeeping_queued = False
        result = DrainResult()
        try:
            operations = self._store.list_pending()
            result.pending = len(operations)
            if not operations:
                return result

            logger.info("Processing %d operation request(s)", len(operations))
            token = await self._lock.acquire(self._lock_timeout_ms)
            if token is None:
                logger.info("Failed to acquire lock, skipping processing")
                result.skipped = "lock"
                return result

            try:
                for filename, request in operations:
                    await self._process_request(filename, request, result)
            finally:
                self._lock.release(token)

            logger.info(
                "Operation queue processing completed",
                extra={
                    "processed": len(result.processed),
                    "failed": len(result.failed),
                    "quarantined": len(result.quarantined),
                },
            )
        except Exception:
            logger.exception("Error processing operation queue")
            result.skipped = result.skipped or "error"
        finally:
            self._processing = False
        return result

    async def _process_request(self, filename: str, request: OperationRequest, result: DrainResult) -> None:
        try:
            await self._apply(request)
        except Exception as exc:
            count = self._failures.increment(filename)
            result.failed.append(filename)
            logger.error(
                "Error processing operation request %s (attempt %d/%d): %s",
                filename,
                count,
                self._max_failures,
                exc,
            )
            if count >= self._max_failures:
                self._quarantine(filename, result)
            return

        self._store.delete(filename)
        self._failures.clear(filename)
        result.processed.append(filename)
        logger.info("Operation request processed: %s (%s)", filename, describe_request(request))

        if isinstance(request, HousekeepingRequest) or self._housekeeping_queued:
            return
        try:
            if not await self._committer.is_first_commit_today():
                return
            if self._housekeeping_pending():
                logger.debug("Housekeeping request already pending")
            else:
                logger.info("First commit of the day, queuing housekeeping")
                self.enqueue(HousekeepingRequest())
            self._housekeeping_queued = True
        except Exception as exc:
            logger.error("Could not schedule housekeeping: %s", exc)

    def _housekeeping_pending(self) -> bool:
        return any(isinstance(pending, HousekeepingRequest) for _, pending in self._store.list_pending())

    async def _apply(self, request: OperationRequest) -> None:
        if isinstance(request, ProcessBatchRequest):
            await self._process_batch()
        elif isinstance(request, HousekeepingRequest):
            await self._housekeeping()
        elif isinstance(request, ProjectChangeRequest):
            await self._project_change(request)
        elif isinstance(request, WriteTimeReportRequest):
            self._reports.save_report(request.body)
            await self._committer.commit(f"{request.type}: {request.file}")
        elif isinstance(request, UpdateProjectsRequest):
            self._projects.save_projects(request.body)
            await self._committer.commit(f"{request.type}: {request.file}")
        elif isinstance(request, InvalidRequest):
            raise InvalidRequestError(f"Invalid request: {request.reason or 'unreadable request file'}")
        else:
            raise InvalidRequestError(f"Unsupported request type: {type(request).__name__}")

    async def _process_batch(self) -> None:
        moved = self._queue.move_to_batch()
        if not moved:
            logger.info("No queued touch events to batch")
            return

        batch_filename: str | None = None
        try:
            entries = self._queue.read_batch_files()
            if not entries:
                logger.warning("No readable touch events in staging")
                return

            grouped = group_queue_entries(entries)
            batch_filename = self._batches.new_batch_filename()
            self._batches.save_batch(grouped, batch_filename)
            await self._committer.commit(f"processBatch: batches/{batch_filename}")
        except Exception:
            self._rollback_batch(batch_filename)
            raise

        self._queue.delete_batch_files()
        logger.info("Batch entry committed: %s", batch_filename)

    def _rollback_batch(self, batch_filename: str | None) -> None:
        if batch_filename is not None:
            try:
                self._batches.remove_batch(batch_filename)
            except OSError as exc:
                logger.error("Error removing uncommitted batch %s: %s", batch_filename, exc)
        self._queue.move_to_queue()

    async def _housekeeping(self) -> None:
        if not await self._committer.is_first_commit_today():
            logger.info("Housekeeping already done today, skipping")
            return

        collected = self._batches.collect_batches()
        if collected.collected:
            await self._committer.commit("housekeeping: batch collection")
        else:
            logger.info("No batch entries to collect during housekeeping")
        await self._committer.housekeeping()

    async def _project_change(self, request: ProjectChangeRequest) -> None:
        if request.action in ("add", "update"):
            self._projects.add_or_update_project(request.branch, request.directory, request.project)
            details = f"{request.branch}/{request.directory}"
        elif request.action == "delete":
            self._projects.delete_project(request.branch, request.directory)
            details = f"{request.branch}/{request.directory}"
        else:
            self._projects.add_unbound_project(request.project)
            details = request.project
        await self._committer.commit(f"{request.type}: {request.action} {details}")

    def _quarantine(self, filename: str, result: DrainResult) -> None:
        try:
            self._store.quarantine(filename)
        except OSError as exc:
            logger.error("Error moving request to backup: %s: %s", filename, exc)
            return

        self._failures.clear(filename)
        result.quarantined.append(filename)
        message = (
            f"Operation request failed {self._max_failures} times and was moved to backup: {filename}"
        )
        logger.warning(message, extra={"request": filename, "backup_dir": str(self._store.backup_directory)})
        if self._notify is not None:
            try:
                self._notify(message)
            except Exception as exc:
                logger.error("Quarantine notification failed: %s", exc)


__all__ = [
    "DEFAULT_INTERVAL_SECONDS",
    "DEFAULT_LOCK_TIMEOUT_MS",
    "DEFAULT_MAX_FAILURES",
    "DrainResult",
    "FailureTracker",
    "OperationQueueProcessor",
]
