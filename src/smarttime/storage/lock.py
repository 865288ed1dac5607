"""Advisory lock file guarding writes to the data directory."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable

from ..errors import LockTimeoutError

logger = logging.getLogger(__name__)

LOCK_FILENAME = ".lock"
POLL_INTERVAL_SECONDS = 0.1


@dataclass(frozen=True, slots=True)
class LockToken:
    """Proof of ownership handed out by :meth:`FileLock.acquire`."""

    token: str
    pid: int
    acquired_at: float
    expires_at: float

    def to_dict(self) -> dict[str, object]:
        return {
            "token": self.token,
            "pid": self.pid,
            "acquired_at": self.acquired_at,
            "expires_at": self.expires_at,
        }


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _read_lock_file(path: Path) -> dict[str, object] | None:
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError:
        return {}
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


class FileLock:
    """Lock file with a bounded acquisition wait and a maximum hold time.

    The lock file records who holds it and until when. A holder that crashed
    or overstayed ``max_age_seconds`` is reclaimed by the next acquirer.
    """

    def __init__(
        self,
        directory: Path,
        *,
        max_age_seconds: float = 300.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._directory = Path(directory)
        self._path = self._directory / LOCK_FILENAME
        self._max_age = max_age_seconds
        self._clock = clock or time.time

    @property
    def path(self) -> Path:
        return self._path

    async def acquire(self, timeout_ms: int = 1000) -> LockToken | None:
        """Try to take the lock until ``timeout_ms`` elapses; ``None`` on timeout."""

        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            try:
                token = self._try_create()
            except OSError as exc:
                logger.error("Error acquiring lock %s: %s", self._path, exc)
                return None
            if token is not None:
                logger.debug("Lock acquired", extra={"lock_path": str(self._path)})
                return token
            if self._reclaim_if_stale():
                continue
            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(POLL_INTERVAL_SECONDS)

        logger.info("Failed to acquire lock within %sms", timeout_ms)
        return None

    def release(self, token: LockToken) -> None:
        """Remove the lock file if it still belongs to ``token``."""

        holder = self.read_holder()
        if holder is not None and holder.get("token") != token.token:
            logger.warning(
                "Lock is held by another owner, not releasing",
                extra={"lock_path": str(self._path), "holder_pid": holder.get("pid")},
            )
            return
        try:
            self._path.unlink(missing_ok=True)
            logger.debug("Lock released", extra={"lock_path": str(self._path)})
        except OSError as exc:
            logger.error("Error releasing lock %s: %s", self._path, exc)

    @asynccontextmanager
    async def held(self, timeout_ms: int = 1000) -> AsyncIterator[LockToken]:
        """Hold the lock for the duration of the block, raising on timeout."""

        token = await self.acquire(timeout_ms)
        if token is None:
            raise LockTimeoutError(f"Could not acquire {self._path} within {timeout_ms}ms")
        try:
            yield token
        finally:
            self.release(token)

    def read_holder(self) -> dict[str, object] | None:
        """Return the parsed lock file, ``{}`` when unreadable, ``None`` when absent."""

        return _read_lock_file(self._path)

    def _try_create(self) -> LockToken | None:
        self._directory.mkdir(parents=True, exist_ok=True)
        now = self._clock()
        token = LockToken(
            token=uuid.uuid4().hex,
            pid=os.getpid(),
            acquired_at=now,
            expires_at=now + self._max_age,
        )
        # Link a fully written temp file so readers never observe a partial lock.
        temp_path = self._directory / f"{LOCK_FILENAME}.{token.token}"
        temp_path.write_text(json.dumps(token.to_dict()), encoding="utf-8")
        try:
            os.link(temp_path, self._path)
        except FileExistsError:
            return None
        finally:
            temp_path.unlink(missing_ok=True)
        return token

    def _reclaim_if_stale(self) -> bool:
        holder = self.read_holder()
        if holder is None:
            return True
        reason = self._stale_reason(holder)
        if reason is None:
            return False
        # A lock created by another acquirer since the check must survive.
        aside = self._directory / f"{LOCK_FILENAME}.stale.{uuid.uuid4().hex}"
        try:
            os.rename(self._path, aside)
        except FileNotFoundError:
            return True
        except OSError as exc:
            logger.error("Error moving stale lock %s aside: %s", self._path, exc)
            return False

        moved = _read_lock_file(aside) or {}
        if moved.get("token") != holder.get("token"):
            logger.info("Lock changed hands while reclaiming it, restoring", extra={"lock_path": str(self._path)})
            self._restore(aside)
            return False

        logger.warning(
            "Reclaiming stale lock (%s)",
            reason,
            extra={"lock_path": str(self._path), "holder_pid": holder.get("pid")},
        )
        try:
            aside.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Error removing stale lock %s: %s", aside, exc)
        return True

    def _restore(self, aside: Path) -> None:
        try:
            os.link(aside, self._path)
        except FileExistsError:
            logger.warning("Lock was taken again before it could be restored", extra={"lock_path": str(self._path)})
        except OSError as exc:
            logger.error("Error restoring lock %s: %s", self._path, exc)
        finally:
            aside.unlink(missing_ok=True)

    def _stale_reason(self, holder: dict[str, object]) -> str | None:
        now = self._clock()
        expires_at = holder.get("expires_at")
        pid = holder.get("pid")
        if not isinstance(expires_at, (int, float)) or not isinstance(pid, int):
            try:
                age = now - self._path.stat().st_mtime
            except OSError:
                return "unreadable"
            return "unreadable" if age > self._max_age else None
        if now >= expires_at:
            return "expired"
        if not _pid_alive(pid):
            return f"holder pid {pid} is not running"
        return None


__all__ = ["FileLock", "LOCK_FILENAME", "LockToken"]
