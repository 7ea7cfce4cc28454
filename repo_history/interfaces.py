from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterator, Protocol

from repo_history.domain.entities import RawCommit, WalkStrategy


class ProgressSink(Protocol):
    """Receives progress from concurrent repository scans.

    Implementations must tolerate calls from several worker threads.
    """

    def begin(self, total: int) -> None:
        ...

    def label(self, slot: int, text: str) -> None:
        ...

    def tick(self) -> None:
        """One repository finished, successfully or not."""
        ...

    def log(self, repo_path: str, message: str, error: BaseException | None = None) -> None:
        ...


class CommitGraph(Protocol):
    """Read-only access to one repository's commit graph."""

    def walk(self, strategy: WalkStrategy) -> Iterator[str]:
        """Yield commit ids reachable from HEAD, newest commit time first."""
        ...

    def resolve(self, commit_id: str) -> RawCommit:
        ...

    def close(self) -> None:
        ...


RepositoryOpener = Callable[[Path], CommitGraph]
