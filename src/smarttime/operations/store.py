"""Directory of pending operation requests, one JSON file per request."""

from __future__ import annotations

import hashlib
import json
import logging
import re
import threading
import time
import uuid
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from ..storage.files import write_json_atomic
from .models import FILE_REQUEST_TYPES, InvalidRequest, OperationRequest, describe_request, parse_request

logger = logging.getLogger(__name__)

REQUEST_FILE_PATTERN = re.compile(r"^\d+_[0-9a-f]+\.json$")


def _request_files(directory: Path) -> list[Path]:
    try:
        children = list(directory.iterdir())
    except FileNotFoundError:
        return []
    return sorted(
        (path for path in children if path.is_file() and REQUEST_FILE_PATTERN.match(path.name)),
        key=lambda path: path.name,
    )


class OperationStore:
    """Append-only store of operation requests.

    File names are ``{timestampMillis}_{hash12}.json`` so that sorting by name
    gives arrival order. Timestamps handed out by one store never repeat.
    """

    def __init__(
        self,
        directory: Path,
        backup_directory: Path,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._dir = Path(directory)
        self._backup = Path(backup_directory)
        self._clock = clock or time.time
        self._last_timestamp = 0
        self._stamp_lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def backup_directory(self) -> Path:
        return self._backup

    def _next_timestamp(self) -> int:
        with self._stamp_lock:
            timestamp = max(int(self._clock() * 1000), self._last_timestamp + 1)
            self._last_timestamp = timestamp
            return timestamp

    def add(self, request: OperationRequest) -> str:
        """Persist ``request`` and return its file name."""

        timestamp = self._next_timestamp()
        field = request.file if isinstance(request, FILE_REQUEST_TYPES) else request.type
        fingerprint = f"{request.type}:{field}:{timestamp}:{uuid.uuid4().hex}"
        digest = hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()[:12]
        filename = f"{timestamp}_{digest}.json"
        write_json_atomic(self._dir / filename, request.model_dump(mode="json", exclude_none=True))
        return filename

    def list_pending(self) -> list[tuple[str, OperationRequest]]:
        """Return ``(filename, request)`` pairs in arrival order.

        Unreadable files come back as :class:`InvalidRequest` so they still go
        through failure accounting.
        """

        pending: list[tuple[str, OperationRequest]] = []
        for path in _request_files(self._dir):
            try:
                document = json.loads(path.read_text(encoding="utf-8"))
                request = parse_request(document)
            except (OSError, json.JSONDecodeError, ValidationError) as exc:
                logger.error("Error reading operation request %s: %s", path.name, exc)
                request = InvalidRequest(reason=str(exc).splitlines()[0] if str(exc) else None)
            pending.append((path.name, request))
        return pending

    def delete(self, filename: str) -> None:
        try:
            (self._dir / filename).unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Error deleting operation request %s: %s", filename, exc)

    def quarantine(self, filename: str) -> Path:
        """Move ``filename`` unmodified into the backup directory."""

        self._backup.mkdir(parents=True, exist_ok=True)
        target = self._backup / filename
        (self._dir / filename).rename(target)
        return target

    def list_quarantined(self) -> list[str]:
        return [path.name for path in _request_files(self._backup)]

    def requeue(self, filename: str) -> str:
        """Return a quarantined request to the live queue under its original name."""

        self._dir.mkdir(parents=True, exist_ok=True)
        (self._backup / filename).rename(self._dir / filename)
        logger.info("Quarantined request requeued: %s", filename)
        return filename


def enqueue(store: OperationStore, request: OperationRequest) -> str:
    """Append ``request`` to ``store`` and log its creation."""

    filename = store.add(request)
    logger.info("Operation request created: %s (%s)", filename, describe_request(request))
    return filename


__all__ = ["OperationStore", "REQUEST_FILE_PATTERN", "enqueue"]
