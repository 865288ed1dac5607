"""Async git committer for the SmartTime data directory."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterable

from ..errors import SmartTimeError
from .utils import sanitize_environment

logger = logging.getLogger(__name__)

HOUSEKEEPING_MARKER = ".last-housekeeping"
GITIGNORE_CONTENT = ".lock\n.lock.*\n.last-housekeeping\n"
AUTHOR_NAME = "COFT SmartTime"
AUTHOR_EMAIL = "smarttime@coft.local"


class CommitError(SmartTimeError):
    """Raised when a git command needed for persistence fails."""

    def __init__(self, message: str, result: "GitResult | None" = None) -> None:
        super().__init__(message)
        self.result = result


class GitNotFoundError(CommitError):
    """Raised when the git executable cannot be located."""


@dataclass(slots=True)
class GitResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _utc_today(clock: Callable[[], datetime]) -> str:
    return clock().astimezone(timezone.utc).date().isoformat()


class GitCommitter:
    """Durable, versioned persistence of the data directory through git."""

    def __init__(
        self,
        data_dir: Path,
        *,
        backup_dir: Path | None = None,
        executable: Path | str | None = None,
        export_dir: Path | None = None,
        export_age_days: int = 90,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._data_dir = Path(data_dir)
        self._backup_dir = Path(backup_dir) if backup_dir is not None else None
        self._executable_path = self._resolve_executable(executable)
        self._export_dir = Path(export_dir) if export_dir is not None else None
        self._export_age_days = export_age_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._git_lock = asyncio.Lock()

    @staticmethod
    def _resolve_executable(explicit: Path | str | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            found = shutil.which(str(explicit))
            if found is not None:
                return Path(found)
            raise GitNotFoundError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise GitNotFoundError("git executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    async def initialize(self) -> None:
        """Turn the data directory into a git repository if it is not one yet."""

        self._data_dir.mkdir(parents=True, exist_ok=True)
        probe = await self._invoke("rev-parse", "--git-dir")
        if probe.ok:
            logger.info("Git repository already initialized", extra={"data_dir": str(self._data_dir)})
            return

        await self._run("init")
        await self._run("config", "user.name", AUTHOR_NAME)
        await self._run("config", "user.email", AUTHOR_EMAIL)
        (self._data_dir / ".gitignore").write_text(GITIGNORE_CONTENT, encoding="utf-8")
        logger.info("Git repository initialized", extra={"data_dir": str(self._data_dir)})

    async def commit(self, message: str) -> bool:
        """Stage everything and commit; returns ``False`` when nothing changed."""

        async with self._git_lock:
            return await self._commit(message)

    async def _commit(self, message: str) -> bool:
        await self._run("add", "--all", ".")
        staged = await self._invoke("diff", "--cached", "--quiet")
        if staged.ok:
            logger.info("No changes to commit")
            return False
        if staged.returncode != 1:
            raise CommitError(f"git diff failed: {staged.stderr.strip()}", staged)

        await self._run("commit", "--quiet", "-m", message)
        logger.info("Git commit created: %s", message)
        return True

    async def is_first_commit_today(self) -> bool:
        """True until housekeeping has been recorded for the current UTC day."""

        return self.read_last_housekeeping() != _utc_today(self._clock)

    async def housekeeping(self) -> None:
        """Compact the repository, bundle it to the backup dir and export reports."""

        async with self._git_lock:
            await self._housekeeping()

    async def _housekeeping(self) -> None:
        today = _utc_today(self._clock)
        await self._run("gc", "--auto", "--quiet")

        has_head = (await self._invoke("rev-parse", "--verify", "--quiet", "HEAD")).ok
        if self._backup_dir is not None and has_head:
            self._backup_dir.mkdir(parents=True, exist_ok=True)
            bundle_path = self._backup_dir / f"smarttime-{today}.bundle"
            await self._run("bundle", "create", str(bundle_path), "--all")
            logger.info("Backup bundle written: %s", bundle_path)

        if self._export_dir is not None:
            exported = self.export_time_reports()
            logger.info("Exported %d time report(s)", exported)

        (self._data_dir / HOUSEKEEPING_MARKER).write_text(today, encoding="utf-8")

    def read_last_housekeeping(self) -> str | None:
        try:
            return (self._data_dir / HOUSEKEEPING_MARKER).read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None

    def export_time_reports(self) -> int:
        """Copy recent ``reports/YYYY/MM/DD.json`` files missing from the export dir."""

        if self._export_dir is None:
            return 0
        reports_dir = self._data_dir / "reports"
        if not reports_dir.is_dir():
            logger.info("No reports directory found, skipping export")
            return 0

        cutoff = self._clock().astimezone(timezone.utc).date() - timedelta(days=self._export_age_days)
        exported = 0
        for source in sorted(reports_dir.glob("*/*/*.json")):
            month_dir = source.parent
            try:
                report_day = date(int(month_dir.parent.name), int(month_dir.name), int(source.stem))
            except ValueError:
                continue
            if report_day < cutoff:
                continue
            target = self._export_dir / month_dir.parent.name / month_dir.name / source.name
            if target.exists():
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
            exported += 1
        return exported

    async def _run(self, *args: str) -> GitResult:
        result = await self._invoke(*args)
        if not result.ok:
            raise CommitError(
                f"git {' '.join(args)} failed with exit code {result.returncode}: {result.stderr.strip()}",
                result,
            )
        return result

    async def _invoke(self, *args: str) -> GitResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(self._data_dir),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return GitResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeGitCommitter(GitCommitter):
    """Test double that records commits instead of running git."""

    def __init__(  # type: ignore[override]
        self,
        *,
        first_commit_today: bool = False,
        failures: Iterable[BaseException | None] | None = None,
    ) -> None:
        self.first_commit_today = first_commit_today
        self.commits: list[str] = []
        self.initialized = False
        self.housekeeping_runs = 0
        self._failures = list(failures or [])

    async def initialize(self) -> None:  # type: ignore[override]
        self.initialized = True

    async def commit(self, message: str) -> bool:  # type: ignore[override]
        if self._failures:
            failure = self._failures.pop(0)
            if failure is not None:
                raise failure
        self.commits.append(message)
        return True

    async def is_first_commit_today(self) -> bool:  # type: ignore[override]
        return self.first_commit_today

    async def housekeeping(self) -> None:  # type: ignore[override]
        self.housekeeping_runs += 1
        self.first_commit_today = False


__all__ = [
    "CommitError",
    "FakeGitCommitter",
    "GitCommitter",
    "GitNotFoundError",
    "GitResult",
    "HOUSEKEEPING_MARKER",
]
