"""Live touch-event queue and its staging area."""

from __future__ import annotations

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from .files import TEMP_SUFFIX, write_json_atomic
from .models import QueueEntry

logger = logging.getLogger(__name__)


def _entry_files(directory: Path) -> list[Path]:
    try:
        children = list(directory.iterdir())
    except FileNotFoundError:
        return []
    return sorted(
        (path for path in children if path.is_file() and not path.name.endswith(TEMP_SUFFIX)),
        key=lambda path: path.name,
    )


class QueueRepository:
    """Moves raw touch events between the live queue, staging and backup."""

    def __init__(
        self,
        queue_dir: Path,
        staging_dir: Path,
        backup_dir: Path,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._queue = Path(queue_dir)
        self._staging = Path(staging_dir)
        self._backup = Path(backup_dir)
        self._clock = clock or time.time

    @property
    def queue_dir(self) -> Path:
        return self._queue

    @property
    def staging_dir(self) -> Path:
        return self._staging

    def add_entry(self, directory: str, filename: str, git_branch: str | None = None) -> Path:
        """Record a touch of ``filename`` inside workspace ``directory``."""

        timestamp = int(self._clock() * 1000)
        digest = hashlib.sha256(f"{directory}:{filename}:{timestamp}".encode("utf-8")).hexdigest()[:12]
        entry = QueueEntry(
            directory=directory,
            filename=filename,
            git_branch=git_branch or None,
            timestamp=timestamp,
        )
        path = write_json_atomic(
            self._queue / f"{timestamp}_{digest}.json",
            entry.model_dump(by_alias=True),
        )
        logger.debug("Queue entry created: %s", path.name)
        return path

    def has_queue_files(self) -> bool:
        return bool(_entry_files(self._queue))

    def move_to_batch(self) -> list[str]:
        """Rename every live queue file into staging, returning the moved names."""

        return self._move_all(self._queue, self._staging, "staging")

    def move_to_queue(self) -> list[str]:
        """Roll staged files back into the live queue."""

        return self._move_all(self._staging, self._queue, "queue")

    def read_batch_files(self) -> list[QueueEntry]:
        """Parse staged entries in filename order; unreadable files are moved to backup."""

        entries: list[QueueEntry] = []
        unreadable: list[Path] = []
        for path in _entry_files(self._staging):
            try:
                document = json.loads(path.read_text(encoding="utf-8"))
                entries.append(QueueEntry.model_validate(document))
            except (OSError, json.JSONDecodeError, ValidationError) as exc:
                logger.error("Error reading staged file %s, moving it to backup: %s", path.name, exc)
                unreadable.append(path)
        if unreadable:
            self._move(unreadable, self._backup, "backup")
        return entries

    def delete_batch_files(self) -> int:
        """Delete staged files; failures are logged and the file stays for the next batch."""

        deleted = 0
        for path in _entry_files(self._staging):
            try:
                path.unlink(missing_ok=True)
                deleted += 1
            except OSError as exc:
                logger.error("Error deleting staged file %s: %s", path.name, exc)
        logger.info("Deleted %d file(s) from staging", deleted)
        return deleted

    def _move_all(self, source: Path, destination: Path, label: str) -> list[str]:
        return self._move(_entry_files(source), destination, label)

    def _move(self, paths: list[Path], destination: Path, label: str) -> list[str]:
        destination.mkdir(parents=True, exist_ok=True)
        moved: list[str] = []
        for path in paths:
            try:
                path.rename(destination / path.name)
                moved.append(path.name)
            except OSError as exc:
                logger.error("Error moving %s to %s: %s", path.name, label, exc)
        logger.info("Moved %d file(s) to %s", len(moved), label)
        return moved


__all__ = ["QueueRepository"]
