from __future__ import annotations

import asyncio
import json
import os
import subprocess
import sys
import time
from pathlib import Path

import pytest

from smarttime.errors import LockTimeoutError
from smarttime.storage import FileLock
from smarttime.storage.lock import LOCK_FILENAME


def _write_holder(directory: Path, *, pid: int, expires_at: float) -> Path:
    path = directory / LOCK_FILENAME
    path.write_text(
        json.dumps({"token": "other", "pid": pid, "acquired_at": time.time(), "expires_at": expires_at}),
        encoding="utf-8",
    )
    return path


def _dead_pid() -> int:
    process = subprocess.Popen([sys.executable, "-c", "pass"])
    process.wait()
    return process.pid


def test_acquire_and_release(tmp_path: Path) -> None:
    lock = FileLock(tmp_path)

    token = asyncio.run(lock.acquire(100))

    assert token is not None
    holder = json.loads(lock.path.read_text(encoding="utf-8"))
    assert holder["token"] == token.token
    assert holder["pid"] == os.getpid()
    assert holder["expires_at"] > holder["acquired_at"]

    lock.release(token)
    assert not lock.path.exists()
    assert list(tmp_path.iterdir()) == []


def test_second_acquire_times_out_while_held(tmp_path: Path) -> None:
    lock = FileLock(tmp_path)
    first = asyncio.run(lock.acquire(100))
    assert first is not None

    second = asyncio.run(FileLock(tmp_path).acquire(50))

    assert second is None
    lock.release(first)


def test_expired_lock_is_reclaimed(tmp_path: Path) -> None:
    _write_holder(tmp_path, pid=os.getpid(), expires_at=time.time() - 10)

    token = asyncio.run(FileLock(tmp_path).acquire(100))

    assert token is not None
    assert json.loads((tmp_path / LOCK_FILENAME).read_text(encoding="utf-8"))["token"] == token.token


def test_lock_of_dead_process_is_reclaimed(tmp_path: Path) -> None:
    _write_holder(tmp_path, pid=_dead_pid(), expires_at=time.time() + 600)

    token = asyncio.run(FileLock(tmp_path).acquire(100))

    assert token is not None


def test_reclaim_keeps_lock_taken_over_since_staleness_check(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_holder(tmp_path, pid=os.getpid(), expires_at=1)
    first = FileLock(tmp_path)
    second = FileLock(tmp_path)
    stale_holder = second.read_holder()

    first_token = asyncio.run(first.acquire(0))
    assert first_token is not None

    monkeypatch.setattr(second, "read_holder", lambda: stale_holder)
    second_token = asyncio.run(second.acquire(0))

    assert second_token is None
    assert json.loads(first.path.read_text(encoding="utf-8"))["token"] == first_token.token
    assert list(tmp_path.glob(f"{LOCK_FILENAME}.stale.*")) == []

    first.release(first_token)
    assert not first.path.exists()


def test_live_unexpired_holder_is_respected(tmp_path: Path) -> None:
    path = _write_holder(tmp_path, pid=os.getpid(), expires_at=time.time() + 600)

    token = asyncio.run(FileLock(tmp_path).acquire(0))

    assert token is None
    assert json.loads(path.read_text(encoding="utf-8"))["token"] == "other"


def test_release_leaves_foreign_lock_alone(tmp_path: Path) -> None:
    lock = FileLock(tmp_path)
    token = asyncio.run(lock.acquire(100))
    assert token is not None
    _write_holder(tmp_path, pid=os.getpid(), expires_at=time.time() + 600)

    lock.release(token)

    assert (tmp_path / LOCK_FILENAME).exists()


def test_held_context_manager_raises_on_timeout(tmp_path: Path) -> None:
    _write_holder(tmp_path, pid=os.getpid(), expires_at=time.time() + 600)

    async def _enter() -> None:
        async with FileLock(tmp_path).held(0):
            pass

    with pytest.raises(LockTimeoutError):
        asyncio.run(_enter())


def test_held_context_manager_releases(tmp_path: Path) -> None:
    lock = FileLock(tmp_path)

    async def _enter() -> None:
        async with lock.held(100):
            assert lock.path.exists()

    asyncio.run(_enter())
    assert not lock.path.exists()
