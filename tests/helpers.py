from __future__ import annotations

import os
import shutil
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

import pytest

from repo_history.adapters.git.git_ops import CommitUnresolvable, RepositoryUnavailable, WalkCreationFailed
from repo_history.domain.entities import RawCommit, RepositoryHandle, WalkStrategy

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_commit(
    commit_id: str,
    age_days: float,
    *,
    author: str = "Bob Builder",
    email: str = "bob@example.com",
    message: str = "Change things\n",
    offset_hours: int = 0,
) -> RawCommit:
    tz = timezone(timedelta(hours=offset_hours))
    when = (NOW - timedelta(days=age_days)).astimezone(tz)
    return RawCommit(
        commit_id=commit_id,
        parents=(),
        author_name=author,
        author_email=email,
        author_time=when,
        committer_name=author,
        committer_email=email,
        commit_time=when,
        message=message,
    )


def handle(name: str) -> RepositoryHandle:
    return RepositoryHandle.from_paths(Path("/workspace") / name, name)


@dataclass
class FakeGraph:
    """In-memory commit graph; ``commits`` are listed newest first."""

    commits: list[RawCommit]
    missing: set[str] = field(default_factory=set)
    walk_error: str | None = None
    crash_on_walk: bool = False
    gate: threading.Event | None = None
    resolved: list[str] = field(default_factory=list)
    strategies: list[WalkStrategy] = field(default_factory=list)
    closed: bool = False

    def walk(self, strategy: WalkStrategy) -> Iterator[str]:
        if self.crash_on_walk:
            raise RuntimeError("unexpected failure")
        if self.walk_error is not None:
            raise WalkCreationFailed(Path("/fake"), self.walk_error)
        if self.gate is not None:
            self.gate.wait(timeout=10)
        self.strategies.append(strategy)
        return iter([c.commit_id for c in self.commits])

    def resolve(self, commit_id: str) -> RawCommit:
        self.resolved.append(commit_id)
        if commit_id in self.missing:
            raise CommitUnresolvable(commit_id, "missing")
        for c in self.commits:
            if c.commit_id == commit_id:
                return c
        raise CommitUnresolvable(commit_id, "missing")

    def close(self) -> None:
        self.closed = True


@dataclass
class FakeOpener:
    graphs: dict[Path, FakeGraph]

    def __call__(self, path: Path) -> FakeGraph:
        graph = self.graphs.get(Path(path))
        if graph is None:
            raise RepositoryUnavailable(Path(path), "not a git repository")
        return graph


@dataclass
class RecordingSink:
    total: int | None = None
    ticks: int = 0
    labels: list[tuple[int, str]] = field(default_factory=list)
    logs: list[tuple[str, str, BaseException | None]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def begin(self, total: int) -> None:
        self.total = total

    def label(self, slot: int, text: str) -> None:
        with self._lock:
            self.labels.append((slot, text))

    def tick(self) -> None:
        with self._lock:
            self.ticks += 1

    def log(self, repo_path: str, message: str, error: BaseException | None = None) -> None:
        with self._lock:
            self.logs.append((repo_path, message, error))


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


def _git_env(home: Path, when: datetime | None = None, author: str = "Alice Liddell") -> dict[str, str]:
    env = dict(os.environ)
    for var in ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE"):
        env.pop(var, None)
    env.update(
        HOME=str(home),
        GIT_CONFIG_NOSYSTEM="1",
        GIT_AUTHOR_NAME=author,
        GIT_AUTHOR_EMAIL=f"{author.split()[0].lower()}@example.com",
        GIT_COMMITTER_NAME=author,
        GIT_COMMITTER_EMAIL=f"{author.split()[0].lower()}@example.com",
    )
    if when is not None:
        stamp = f"{int(when.timestamp())} {when.strftime('%z') or '+0000'}"
        env["GIT_AUTHOR_DATE"] = stamp
        env["GIT_COMMITTER_DATE"] = stamp
    return env


def git(repo: Path, *args: str, when: datetime | None = None, author: str = "Alice Liddell") -> str:
    proc = subprocess.run(
        ["git", "-C", str(repo), *args],
        check=True,
        capture_output=True,
        text=True,
        env=_git_env(repo.parent, when, author),
    )
    return proc.stdout.strip()


def init_repo(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q")
    return path


def git_commit(
    repo: Path,
    message: str,
    age_days: float,
    *,
    author: str = "Alice Liddell",
    filename: str | None = None,
    content: str = "",
) -> str:
    """Commit ``age_days`` before NOW and return the new commit id."""
    when = NOW - timedelta(days=age_days)
    if filename is not None:
        (repo / filename).write_text(content, encoding="utf-8")
        git(repo, "add", filename)
    git(repo, "commit", "-q", "--allow-empty", "--no-gpg-sign", "-m", message, when=when, author=author)
    return git(repo, "rev-parse", "HEAD")
