from __future__ import annotations

import asyncio
import shutil
import subprocess
from datetime import datetime, timezone
from pathlib import Path

import pytest

from smarttime.git import CommitError, GitCommitter, GitNotFoundError
from smarttime.git.committer import HOUSEKEEPING_MARKER
from smarttime.git.utils import sanitize_environment

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

NOW = datetime(2026, 2, 20, 12, 0, tzinfo=timezone.utc)


def test_git_not_found(tmp_path: Path) -> None:
    with pytest.raises(GitNotFoundError):
        GitCommitter(tmp_path, executable=tmp_path / "missing-git")


def test_failing_git_raises_commit_error(tmp_path: Path) -> None:
    script = tmp_path / "git"
    script.write_text("#!/bin/sh\necho \"fatal: $@\" >&2\nexit 128\n", encoding="utf-8")
    script.chmod(0o755)
    data = tmp_path / "data"
    data.mkdir()

    committer = GitCommitter(data, executable=script)

    with pytest.raises(CommitError) as excinfo:
        asyncio.run(committer.commit("timereport: reports/2026/02/15.json"))
    assert excinfo.value.result is not None
    assert excinfo.value.result.returncode == 128
    assert "fatal: add --all ." in excinfo.value.result.stderr


def test_sanitize_environment_strips_repository_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_DIR", "/elsewhere/.git")
    env = sanitize_environment()
    assert "GIT_DIR" not in env
    assert env["GIT_TERMINAL_PROMPT"] == "0"


@requires_git
def test_initialize_and_commit(tmp_path: Path) -> None:
    data = tmp_path / "data"
    committer = GitCommitter(data)

    async def scenario() -> tuple[bool, bool]:
        await committer.initialize()
        await committer.initialize()
        (data / "projects.json").write_text("{}", encoding="utf-8")
        first = await committer.commit("projects: projects.json")
        second = await committer.commit("projects: projects.json")
        return first, second

    first, second = asyncio.run(scenario())

    assert (first, second) == (True, False)
    assert ".lock" in (data / ".gitignore").read_text(encoding="utf-8")


@requires_git
def test_lock_file_is_never_committed(tmp_path: Path) -> None:
    data = tmp_path / "data"
    committer = GitCommitter(data)

    async def scenario() -> bool:
        await committer.initialize()
        await committer.commit("init")
        (data / ".lock").write_text("{}", encoding="utf-8")
        return await committer.commit("only the lock changed")

    assert asyncio.run(scenario()) is False


@requires_git
def test_concurrent_commits_are_serialized(tmp_path: Path) -> None:
    data = tmp_path / "data"
    committer = GitCommitter(data, backup_dir=tmp_path / "backup")

    async def write_and_commit(index: int) -> bool:
        (data / f"file{index}.json").write_text(f'{{"index": {index}}}', encoding="utf-8")
        return await committer.commit(f"c{index}")

    async def scenario() -> list[object]:
        await committer.initialize()
        await committer.commit("init")
        return await asyncio.gather(
            *(write_and_commit(index) for index in range(8)),
            committer.housekeeping(),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())

    assert not [result for result in results if isinstance(result, BaseException)]
    assert True in results[:8]
    tracked = subprocess.run(
        ["git", "ls-files"], cwd=data, capture_output=True, text=True, check=True
    ).stdout.split()
    assert {f"file{index}.json" for index in range(8)} <= set(tracked)


@requires_git
def test_housekeeping_marks_day_and_writes_bundle(tmp_path: Path) -> None:
    data = tmp_path / "data"
    backup = tmp_path / "backup"
    export = tmp_path / "export"
    committer = GitCommitter(
        data,
        backup_dir=backup,
        export_dir=export,
        export_age_days=30,
        clock=lambda: NOW,
    )

    async def scenario() -> tuple[bool, bool]:
        await committer.initialize()
        report_dir = data / "reports" / "2026" / "02"
        report_dir.mkdir(parents=True)
        (report_dir / "15.json").write_text('{"date": "2026-02-15"}', encoding="utf-8")
        old_dir = data / "reports" / "2025" / "01"
        old_dir.mkdir(parents=True)
        (old_dir / "02.json").write_text('{"date": "2025-01-02"}', encoding="utf-8")
        await committer.commit("timereport")
        before = await committer.is_first_commit_today()
        await committer.housekeeping()
        after = await committer.is_first_commit_today()
        return before, after

    before, after = asyncio.run(scenario())

    assert (before, after) == (True, False)
    assert (data / HOUSEKEEPING_MARKER).read_text(encoding="utf-8") == "2026-02-20"
    assert (backup / "smarttime-2026-02-20.bundle").exists()
    assert (export / "2026" / "02" / "15.json").exists()
    assert not (export / "2025").exists()
