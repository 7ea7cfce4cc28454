from __future__ import annotations

import threading
from pathlib import Path

import pytest

from helpers import NOW, FakeGraph, FakeOpener, RecordingSink, git_commit, handle, init_repo, make_commit, requires_git
from repo_history.domain.classifier import ClassifierConfig
from repo_history.domain.entities import RepositoryHandle, WalkStrategy
from repo_history.pipeline.aggregator import HistoryAggregator, PoolConstructionFailed, default_worker_count


def _aggregator(graphs: dict, *, sink: RecordingSink | None = None, max_workers: int | None = 4, **cfg: object) -> HistoryAggregator:
    return HistoryAggregator(
        classifier_config=ClassifierConfig(**{"max_age_days": 10, **cfg}),  # type: ignore[arg-type]
        strategy=WalkStrategy.FIRST_PARENT,
        max_workers=max_workers,
        progress=sink or RecordingSink(),
        opener=FakeOpener(graphs),
        now=NOW,
    )


def _two_repos() -> tuple[list[RepositoryHandle], dict]:
    r1, r2 = handle("r1"), handle("r2")
    graphs = {
        r1.abs_path: FakeGraph(
            [
                make_commit("a1", 0, author="Alice"),
                make_commit("a2", 5, author="Bob"),
                make_commit("a3", 40, author="Alice"),
                make_commit("a4", 50, author="Alice"),
            ]
        ),
        r2.abs_path: FakeGraph(
            [
                make_commit("b1", 2, author="Alice"),
                make_commit("b2", 3, author="Bob"),
            ]
        ),
    }
    return [r1, r2], graphs


def test_merges_recent_commits_newest_first() -> None:
    repos, graphs = _two_repos()

    snapshot = _aggregator(graphs).collect(repos)

    assert [c.commit_id for c in snapshot.commits] == ["a1", "b1", "b2", "a2"]
    assert [snapshot.repository_of(c).relative_path for c in snapshot.commits] == ["r1", "r2", "r2", "r1"]
    assert "a4" not in graphs[repos[0].abs_path].resolved
    assert snapshot.missing_commit_count == 0
    assert snapshot.failed_repositories == ()


def test_author_filter_keeps_age_cutoff() -> None:
    repos, graphs = _two_repos()

    snapshot = _aggregator(graphs, author_substring="alice").collect(repos)

    assert [c.commit_id for c in snapshot.commits] == ["a1", "b1"]


def test_unopenable_repository_is_skipped() -> None:
    repos, graphs = _two_repos()
    repos.insert(1, handle("invalid"))
    sink = RecordingSink()

    snapshot = _aggregator(graphs, sink=sink).collect(repos)

    assert [c.commit_id for c in snapshot.commits] == ["a1", "b1", "b2", "a2"]
    assert snapshot.failed_repositories == ("invalid",)
    assert [log[0] for log in sink.logs] == ["invalid"]
    assert sink.total == 3
    assert sink.ticks == 3


def test_repositories_keep_input_order_whatever_finishes_first() -> None:
    repos, graphs = _two_repos()
    gate = threading.Event()
    graphs[repos[0].abs_path].gate = gate

    class ReleasingSink(RecordingSink):
        def tick(self) -> None:
            super().tick()
            gate.set()

    snapshot = _aggregator(graphs, sink=ReleasingSink()).collect(repos)

    assert snapshot.repositories == tuple(repos)
    assert [c.commit_id for c in snapshot.commits] == ["a1", "b1", "b2", "a2"]


def test_equal_timestamps_order_by_repository_then_id() -> None:
    r1, r2 = handle("r1"), handle("r2")
    graphs = {
        r1.abs_path: FakeGraph([make_commit("zz", 1), make_commit("aa", 1)]),
        r2.abs_path: FakeGraph([make_commit("mm", 1)]),
    }

    first = _aggregator(graphs).collect([r2, r1])
    second = _aggregator(graphs, max_workers=1).collect([r2, r1])

    assert [c.commit_id for c in first.commits] == ["mm", "aa", "zz"]
    assert first.commits == second.commits


def test_missing_commits_are_summed_across_repositories() -> None:
    repos, graphs = _two_repos()
    graphs[repos[0].abs_path].missing = {"a2"}
    graphs[repos[1].abs_path].missing = {"b1", "b2"}

    snapshot = _aggregator(graphs).collect(repos)

    assert [c.commit_id for c in snapshot.commits] == ["a1"]
    assert snapshot.missing_commit_count == 3
    assert snapshot.failed_repositories == ()


def test_crashing_scan_does_not_affect_other_repositories() -> None:
    repos, graphs = _two_repos()
    graphs[repos[0].abs_path].crash_on_walk = True
    sink = RecordingSink()

    snapshot = _aggregator(graphs, sink=sink).collect(repos)

    assert [c.commit_id for c in snapshot.commits] == ["b1", "b2"]
    assert snapshot.failed_repositories == ("r1",)
    assert sink.logs[0][:2] == ("r1", "Scan aborted")
    assert sink.ticks == 2


def test_empty_repository_list() -> None:
    sink = RecordingSink()

    snapshot = _aggregator({}, sink=sink).collect([])

    assert snapshot.commits == ()
    assert snapshot.repositories == ()
    assert sink.total == 0


def test_pool_failure_is_fatal() -> None:
    repos, graphs = _two_repos()

    with pytest.raises(PoolConstructionFailed):
        _aggregator(graphs, max_workers=0).collect(repos)


def test_slots_are_released_after_each_scan() -> None:
    repos, graphs = _two_repos()
    sink = RecordingSink()

    _aggregator(graphs, sink=sink, max_workers=1).collect(repos)

    assert {slot for slot, _ in sink.labels} == {0}
    assert sink.labels[-1] == (0, "Idle")


def test_default_worker_count_respects_ceiling() -> None:
    assert 1 <= default_worker_count() <= 16
    assert default_worker_count(ceiling=1) == 1


@requires_git
def test_collects_from_real_repositories(tmp_path: Path) -> None:
    r1 = init_repo(tmp_path / "r1")
    git_commit(r1, "old work", 40)
    git_commit(r1, "recent work", 5)
    git_commit(r1, "today", 0)
    r2 = init_repo(tmp_path / "r2")
    git_commit(r2, "fix: r2 bug", 3, author="Bob Builder")
    repos = [
        RepositoryHandle.from_paths(r1, "r1"),
        RepositoryHandle.from_paths(tmp_path / "invalid", "invalid"),
        RepositoryHandle.from_paths(r2, "r2"),
    ]

    snapshot = HistoryAggregator(
        classifier_config=ClassifierConfig(max_age_days=10),
        max_workers=2,
        now=NOW,
    ).collect(repos)

    assert [c.summary for c in snapshot.commits] == ["today", "fix: r2 bug", "recent work"]
    assert snapshot.commits[1].committer_name == "Bob Builder"
    assert snapshot.failed_repositories == ("invalid",)
