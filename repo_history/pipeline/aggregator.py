from __future__ import annotations

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from repo_history.adapters.git.git_ops import GitRepository
from repo_history.domain.classifier import Classifier, ClassifierConfig
from repo_history.domain.entities import (
    HistorySnapshot,
    RepoScanResult,
    RepositoryHandle,
    WalkStrategy,
)
from repo_history.interfaces import ProgressSink, RepositoryOpener
from repo_history.pipeline.progress import NullProgressSink
from repo_history.pipeline.scanner import RepoScanner
from repo_history.pipeline.slots import SlotTracker

logger = logging.getLogger(__name__)

# Beyond this many workers, concurrent git processes mostly contend for disk.
DEFAULT_WORKER_CEILING = 16


class PoolConstructionFailed(RuntimeError):
    pass


def default_worker_count(ceiling: int = DEFAULT_WORKER_CEILING) -> int:
    return max(1, min(os.cpu_count() or 1, ceiling))


@dataclass
class HistoryAggregator:
    """Scan many repositories concurrently and merge them into one snapshot.

    Each repository is scanned by exactly one worker. Per-repository
    failures never abort the scan; only failing to build the worker pool does
    (``PoolConstructionFailed``), in which case no snapshot is produced.
    """

    classifier_config: ClassifierConfig
    strategy: WalkStrategy = WalkStrategy.ALL_PARENTS
    max_workers: int | None = None
    progress: ProgressSink = field(default_factory=NullProgressSink)
    opener: RepositoryOpener = GitRepository.open
    now: datetime | None = None

    def worker_count(self) -> int:
        if self.max_workers is None:
            return default_worker_count()
        return int(self.max_workers)

    def collect(self, repositories: Sequence[RepositoryHandle]) -> HistorySnapshot:
        repos = tuple(repositories)
        workers = self.worker_count()
        if workers > 0 and repos:
            workers = min(workers, len(repos))
        scanner = RepoScanner(
            classifier=Classifier.create(self.classifier_config, now=self.now),
            strategy=self.strategy,
            progress=self.progress,
            opener=self.opener,
        )

        try:
            pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="repo-scan")
            slots = SlotTracker(workers)
        except (ValueError, RuntimeError) as exc:
            raise PoolConstructionFailed(f"Failed to create a pool of {workers} workers: {exc}") from exc

        self.progress.begin(len(repos))
        results: list[RepoScanResult] = []
        with pool:
            futs: dict[Future[RepoScanResult], int] = {}
            for index, repo in enumerate(repos):
                try:
                    futs[pool.submit(self._scan_in_slot, scanner, slots, index, repo)] = index
                except RuntimeError as exc:
                    # Threads are started lazily on submit.
                    for fut in futs:
                        fut.cancel()
                    raise PoolConstructionFailed(f"Failed to start scan workers: {exc}") from exc

            for fut in as_completed(futs):
                index = futs[fut]
                try:
                    result = fut.result()
                except Exception as exc:
                    logger.exception("Scan of %s crashed", repos[index].relative_path)
                    self.progress.log(repos[index].relative_path, "Scan aborted", exc)
                    result = RepoScanResult(repo_index=index, error=f"Scan aborted: {exc}")
                results.append(result)
                self.progress.tick()

        snapshot = HistorySnapshot.build(repos, results)
        logger.info(
            "Collected %d commits from %d repositories (%d failed, %d unresolvable commits)",
            len(snapshot.commits),
            len(repos),
            len(snapshot.failed_repositories),
            snapshot.missing_commit_count,
        )
        return snapshot

    @staticmethod
    def _scan_in_slot(
        scanner: RepoScanner,
        slots: SlotTracker,
        index: int,
        repo: RepositoryHandle,
    ) -> RepoScanResult:
        slot = slots.acquire()
        try:
            return scanner.scan(index, repo, slot)
        finally:
            slots.release(slot)

