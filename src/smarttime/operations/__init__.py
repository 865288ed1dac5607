"""Operation requests, their store and the queue processor."""

from .models import (
    HousekeepingRequest,
    InvalidRequest,
    OperationRequest,
    ProcessBatchRequest,
    ProjectChangeRequest,
    UpdateProjectsRequest,
    WriteTimeReportRequest,
    parse_request,
)
from .processor import DrainResult, FailureTracker, OperationQueueProcessor
from .store import OperationStore, enqueue
from .trigger import BatchTrigger

__all__ = [
    "BatchTrigger",
    "DrainResult",
    "FailureTracker",
    "HousekeepingRequest",
    "InvalidRequest",
    "OperationQueueProcessor",
    "OperationRequest",
    "OperationStore",
    "ProcessBatchRequest",
    "ProjectChangeRequest",
    "UpdateProjectsRequest",
    "WriteTimeReportRequest",
    "enqueue",
    "parse_request",
]
