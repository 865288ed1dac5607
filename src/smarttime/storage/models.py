"""Data models for queued touch events and batch archives."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

NO_BRANCH = "no-branch"

BatchFileEntry = dict[str, Any]
"""One touch inside a batch: ``{"File": str, "Timestamp": int}``."""

BatchEntry = dict[str, dict[str, list[BatchFileEntry]]]
"""Nested mapping ``branch -> directory -> [BatchFileEntry]``."""


class QueueEntry(BaseModel):
    """A single raw file touch written by a producer."""

    model_config = ConfigDict(populate_by_name=True)

    directory: str
    filename: str
    git_branch: str | None = Field(default=None, alias="gitBranch")
    timestamp: int = Field(..., description="Epoch milliseconds of the touch.")

    def to_file_entry(self) -> BatchFileEntry:
        return {"File": self.filename, "Timestamp": self.timestamp}


@dataclass(slots=True)
class CollectResult:
    """Outcome of one batch collection pass."""

    collected: bool
    files_processed: int


__all__ = ["BatchEntry", "BatchFileEntry", "CollectResult", "NO_BRANCH", "QueueEntry"]
