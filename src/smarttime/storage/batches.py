"""Transient batch files and the per-day batch archive."""

from __future__ import annotations

import copy
import json
import logging
import re
import secrets
import string
import time
from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from .files import read_json, write_json_atomic
from .models import NO_BRANCH, BatchEntry, BatchFileEntry, CollectResult, QueueEntry

logger = logging.getLogger(__name__)

BATCH_FILE_PATTERN = re.compile(r"^batch_(\d+)(?:_[A-Za-z0-9]+)?\.json$")
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def merge_batch_entries(existing: Mapping[str, Any], incoming: Mapping[str, Any]) -> BatchEntry:
    """Deep-merge two batch mappings without mutating either.

    Events of ``incoming`` are appended after those of ``existing`` for every
    ``branch -> directory`` pair; nothing is deduplicated.
    """

    merged: BatchEntry = {}
    for source in (existing, incoming):
        for branch, directories in source.items():
            if not isinstance(directories, Mapping):
                continue
            target = merged.setdefault(branch, {})
            for directory, events in directories.items():
                if not isinstance(events, list):
                    continue
                target.setdefault(directory, []).extend(copy.deepcopy(events))
    return merged


def group_queue_entries(entries: Iterable[QueueEntry]) -> BatchEntry:
    """Group touch events by branch then directory, keeping their order."""

    grouped: BatchEntry = {}
    for entry in entries:
        branch = entry.git_branch or NO_BRANCH
        grouped.setdefault(branch, {}).setdefault(entry.directory, []).append(entry.to_file_entry())
    return grouped


def _utc_date_from_millis(value: Any) -> date | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).date()
    except (OverflowError, OSError, ValueError):
        return None


class BatchRepository:
    """Reads and writes batch files below ``{data}/batches``."""

    def __init__(self, batches_dir: Path, *, clock: Callable[[], float] | None = None) -> None:
        self._dir = Path(batches_dir)
        self._clock = clock or time.time

    @property
    def batches_dir(self) -> Path:
        return self._dir

    def new_batch_filename(self) -> str:
        timestamp = int(self._clock() * 1000)
        suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
        return f"batch_{timestamp}_{suffix}.json"

    def save_batch(self, grouped: BatchEntry, filename: str) -> Path:
        return write_json_atomic(self._dir / filename, grouped)

    def remove_batch(self, filename: str) -> None:
        (self._dir / filename).unlink(missing_ok=True)

    def archive_path(self, day: date) -> Path:
        return self._dir / f"{day.year:04d}" / f"{day.month:02d}" / f"{day.day:02d}.json"

    def read_archive(self, day: date) -> BatchEntry:
        path = self.archive_path(day)
        if not path.exists():
            return {}
        return read_json(path)

    def list_transient(self) -> list[Path]:
        """Return transient batch files, skipping subdirectories and foreign names."""

        try:
            children = list(self._dir.iterdir())
        except FileNotFoundError:
            return []
        return sorted(
            (path for path in children if path.is_file() and BATCH_FILE_PATTERN.match(path.name)),
            key=lambda path: path.name,
        )

    def entries_for_day(self, day: date) -> BatchEntry:
        """Return every event of UTC ``day`` from the archive and uncollected batches."""

        result = self.read_archive(day)
        for path in self.list_transient():
            batch = self._read_transient(path)
            if batch is None:
                continue
            fallback = self._file_date(path)
            for branch, directory, event in self._iter_events(batch):
                if self._event_date(event, fallback) == day:
                    result = merge_batch_entries(result, {branch: {directory: [event]}})
        return result

    def collect_batches(self) -> CollectResult:
        """Fold transient batch files into ``{YYYY}/{MM}/{DD}.json`` archives.

        Events are grouped by their own UTC date. Events dated today stay in
        the transient area. Source files are only removed once every day has
        been merged, so a failed pass can be retried without losing events.
        """

        today = datetime.fromtimestamp(self._clock(), tz=timezone.utc).date()
        by_day: dict[date, BatchEntry] = defaultdict(dict)
        retained: dict[Path, BatchEntry] = {}
        consumed: list[Path] = []

        for path in self.list_transient():
            batch = self._read_transient(path)
            if batch is None:
                continue
            fallback = self._file_date(path)
            kept: BatchEntry = {}
            contributed = False
            for branch, directory, event in self._iter_events(batch):
                event_day = self._event_date(event, fallback)
                if event_day is None or event_day >= today:
                    kept.setdefault(branch, {}).setdefault(directory, []).append(event)
                    continue
                by_day[event_day].setdefault(branch, {}).setdefault(directory, []).append(event)
                contributed = True
            if contributed:
                consumed.append(path)
                if kept:
                    retained[path] = kept

        if not by_day:
            logger.info("No batch entries to collect")
            return CollectResult(collected=False, files_processed=0)

        for day in sorted(by_day):
            target = self.archive_path(day)
            existing = read_json(target) if target.exists() else {}
            write_json_atomic(target, merge_batch_entries(existing, by_day[day]))
            logger.info(
                "Collected batch events into %s",
                target.relative_to(self._dir).as_posix(),
                extra={"day": day.isoformat()},
            )

        for path in consumed:
            if path in retained:
                write_json_atomic(path, retained[path])
            else:
                path.unlink(missing_ok=True)

        logger.info("Batch collection completed: %d file(s) processed", len(consumed))
        return CollectResult(collected=True, files_processed=len(consumed))

    def _read_transient(self, path: Path) -> Mapping[str, Any] | None:
        try:
            batch = read_json(path)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Error reading batch file %s: %s", path.name, exc)
            return None
        if not isinstance(batch, Mapping):
            logger.error("Batch file %s does not contain a mapping", path.name)
            return None
        return batch

    @staticmethod
    def _iter_events(batch: Mapping[str, Any]) -> Iterable[tuple[str, str, BatchFileEntry]]:
        for branch, directories in batch.items():
            if not isinstance(directories, Mapping):
                continue
            for directory, events in directories.items():
                if not isinstance(events, list):
                    continue
                for event in events:
                    yield branch, directory, event

    @staticmethod
    def _file_date(path: Path) -> date | None:
        match = BATCH_FILE_PATTERN.match(path.name)
        return _utc_date_from_millis(int(match.group(1))) if match else None

    @staticmethod
    def _event_date(event: Any, fallback: date | None) -> date | None:
        if isinstance(event, Mapping):
            event_day = _utc_date_from_millis(event.get("Timestamp"))
            if event_day is not None:
                return event_day
        return fallback


__all__ = [
    "BATCH_FILE_PATTERN",
    "BatchRepository",
    "group_queue_entries",
    "merge_batch_entries",
]
