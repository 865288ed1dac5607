"""Git persistence for the SmartTime data directory."""

from .committer import CommitError, FakeGitCommitter, GitCommitter, GitNotFoundError, GitResult

__all__ = [
    "CommitError",
    "FakeGitCommitter",
    "GitCommitter",
    "GitNotFoundError",
    "GitResult",
]
