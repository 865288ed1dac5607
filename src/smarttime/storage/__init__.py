"""Storage abstractions for SmartTime."""

from .batches import BATCH_FILE_PATTERN, BatchRepository, group_queue_entries, merge_batch_entries
from .lock import FileLock, LockToken
from .models import BatchEntry, CollectResult, NO_BRANCH, QueueEntry
from .projects import ProjectRepository
from .queue import QueueRepository
from .reports import TimeReportRepository

__all__ = [
    "BATCH_FILE_PATTERN",
    "BatchEntry",
    "BatchRepository",
    "CollectResult",
    "FileLock",
    "LockToken",
    "NO_BRANCH",
    "ProjectRepository",
    "QueueEntry",
    "QueueRepository",
    "TimeReportRepository",
    "group_queue_entries",
    "merge_batch_entries",
]
