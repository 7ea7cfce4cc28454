from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator

from repo_history.adapters.git.git_ops import CommitUnresolvable, GitError, GitRepository
from repo_history.domain.classifier import Classifier
from repo_history.domain.entities import (
    CommitRecord,
    RawCommit,
    RepoScanResult,
    RepositoryHandle,
    WalkStrategy,
)
from repo_history.interfaces import CommitGraph, ProgressSink, RepositoryOpener
from repo_history.pipeline.progress import NullProgressSink

logger = logging.getLogger(__name__)

IDLE = "Idle"


def to_record(repo_index: int, commit: RawCommit) -> CommitRecord:
    return CommitRecord(
        repo_index=repo_index,
        commit_id=commit.commit_id,
        author_name=commit.author_name,
        author_email=commit.author_email,
        committer_name=commit.committer_name,
        commit_time=commit.commit_time,
        summary=commit.summary,
        message=commit.message,
    )


@dataclass
class RepoScanner:
    """Collect the matching commits of a single repository.

    Failures stay local: a repository that cannot be opened or walked is
    reported to the progress sink and contributes no commits, and a commit id
    that cannot be resolved is counted and skipped.
    """

    classifier: Classifier
    strategy: WalkStrategy = WalkStrategy.ALL_PARENTS
    progress: ProgressSink = field(default_factory=NullProgressSink)
    opener: RepositoryOpener = GitRepository.open

    def scan(self, repo_index: int, repo: RepositoryHandle, slot: int = 0) -> RepoScanResult:
        result = RepoScanResult(repo_index=repo_index)
        self.progress.label(slot, f"Scanning {repo.relative_path}")
        try:
            try:
                graph = self.opener(repo.abs_path)
            except GitError as exc:
                return self._fail(result, repo, "Failed to open", exc)

            try:
                try:
                    commit_ids = graph.walk(self.strategy)
                except GitError as exc:
                    return self._fail(result, repo, "Failed to query history", exc)
                try:
                    self._collect(graph, repo, commit_ids, result)
                except GitError as exc:
                    return self._fail(result, repo, "Failed to walk history", exc)
            finally:
                graph.close()

            logger.debug(
                "%s: %d matching commits, %d unresolvable",
                repo.relative_path,
                len(result.commits),
                result.missing_commits,
            )
            return result
        finally:
            self.progress.label(slot, IDLE)

    def _collect(
        self,
        graph: CommitGraph,
        repo: RepositoryHandle,
        commit_ids: Iterator[str],
        result: RepoScanResult,
    ) -> None:
        try:
            for commit_id in commit_ids:
                try:
                    commit = graph.resolve(commit_id)
                except CommitUnresolvable as exc:
                    result.missing_commits += 1
                    logger.debug("%s: %s", repo.relative_path, exc)
                    continue

                include, abort_walk = self.classifier.classify(commit)
                if include:
                    result.commits.append(to_record(result.repo_index, commit))
                if abort_walk:
                    break
        finally:
            close = getattr(commit_ids, "close", None)
            if close is not None:
                close()

    def _fail(
        self,
        result: RepoScanResult,
        repo: RepositoryHandle,
        message: str,
        exc: BaseException,
    ) -> RepoScanResult:
        result.commits.clear()
        result.error = f"{message}: {exc}"
        logger.debug("%s: %s", repo.relative_path, result.error)
        self.progress.log(repo.relative_path, message, exc)
        return result
