from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Sequence


class WalkStrategy(str, Enum):
    """Which parents of a merge commit are followed during a walk."""

    FIRST_PARENT = "first-parent"
    ALL_PARENTS = "all-parents"


@dataclass(frozen=True)
class RepositoryHandle:
    """A local repository as listed by the manifest."""

    abs_path: Path
    relative_path: str
    description: str = ""

    def __post_init__(self) -> None:
        if not self.description:
            object.__setattr__(self, "description", Path(self.abs_path).name or self.relative_path)

    @classmethod
    def from_paths(cls, abs_path: Path, relative_path: str) -> "RepositoryHandle":
        return cls(abs_path=Path(abs_path), relative_path=relative_path)


@dataclass(frozen=True)
class RawCommit:
    """A commit object as read from a repository's object database."""

    commit_id: str
    parents: tuple[str, ...]
    author_name: str
    author_email: str
    author_time: datetime
    committer_name: str
    committer_email: str
    commit_time: datetime
    message: str

    @property
    def summary(self) -> str:
        lines = self.message.strip().splitlines()
        return lines[0].strip() if lines else ""


@dataclass(frozen=True)
class CommitRecord:
    """A matching commit, tied to its repository by index into the snapshot."""

    repo_index: int
    commit_id: str
    author_name: str
    author_email: str
    committer_name: str
    commit_time: datetime  # committer time, carries the commit's own UTC offset
    summary: str
    message: str

    @property
    def timestamp(self) -> int:
        return int(self.commit_time.timestamp())


@dataclass
class RepoScanResult:
    """What one repository contributed to a scan."""

    repo_index: int
    commits: list[CommitRecord] = field(default_factory=list)
    missing_commits: int = 0
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def merge_order_key(commit: CommitRecord) -> tuple[int, int, str]:
    # Newest first; ties broken by repository input order, then commit id.
    return (-commit.timestamp, commit.repo_index, commit.commit_id)


@dataclass(frozen=True)
class HistorySnapshot:
    """Merged, time-ordered view over all scanned repositories."""

    repositories: tuple[RepositoryHandle, ...]
    commits: tuple[CommitRecord, ...]
    missing_commit_count: int = 0
    failed_repositories: tuple[str, ...] = ()

    @classmethod
    def build(
        cls,
        repositories: Sequence[RepositoryHandle],
        results: Sequence[RepoScanResult],
    ) -> "HistorySnapshot":
        """Concatenate per-repository results and sort them once."""
        commits: list[CommitRecord] = []
        missing = 0
        failed: list[str] = []
        for result in sorted(results, key=lambda r: r.repo_index):
            commits.extend(result.commits)
            missing += result.missing_commits
            if result.failed:
                failed.append(repositories[result.repo_index].relative_path)
        commits.sort(key=merge_order_key)
        return cls(
            repositories=tuple(repositories),
            commits=tuple(commits),
            missing_commit_count=missing,
            failed_repositories=tuple(failed),
        )

    def repository_of(self, commit: CommitRecord) -> RepositoryHandle:
        return self.repositories[commit.repo_index]
