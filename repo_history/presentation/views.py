from __future__ import annotations

from typing import Callable, Sequence

from rich.console import Console, Group, RenderableType
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from repo_history.common.time_utils import format_commit_time
from repo_history.domain.entities import CommitRecord, HistorySnapshot, RepositoryHandle


def _sort_key(snapshot: HistorySnapshot, column: str) -> Callable[[CommitRecord], object]:
    if column == "repo":
        return lambda c: snapshot.repository_of(c).description
    if column == "committer":
        return lambda c: c.committer_name
    if column == "summary":
        return lambda c: c.summary
    raise ValueError(f"Unknown sort column: {column}")


def sorted_commits(
    snapshot: HistorySnapshot,
    column: str = "date",
    *,
    reverse: bool = False,
) -> list[CommitRecord]:
    """Snapshot commits ordered for display.

    "date" keeps the snapshot's newest-first order; other columns sort
    stably, so commits with equal keys stay newest first.
    """
    commits = list(snapshot.commits)
    if column == "date":
        return commits[::-1] if reverse else commits
    return sorted(commits, key=_sort_key(snapshot, column), reverse=reverse)


def history_table(
    snapshot: HistorySnapshot,
    commits: Sequence[CommitRecord] | None = None,
    *,
    limit: int | None = None,
) -> Table:
    table = Table(header_style="bold", box=None, pad_edge=False, expand=True)
    table.add_column("Commit", no_wrap=True, style="blue")
    table.add_column("Repo", no_wrap=True, style="red", max_width=24)
    table.add_column("Committer", no_wrap=True, style="green", max_width=20)
    table.add_column("Summary", overflow="ellipsis", no_wrap=True)

    rows = list(snapshot.commits if commits is None else commits)
    if limit is not None and limit > 0:
        rows = rows[:limit]
    for commit in rows:
        table.add_row(
            format_commit_time(commit.commit_time),
            snapshot.repository_of(commit).description,
            commit.committer_name,
            commit.summary,
        )
    return table


def status_line(snapshot: HistorySnapshot) -> Text:
    text = Text(
        f"Found {len(snapshot.commits)} commits across {len(snapshot.repositories)} repositories",
        style="bold",
    )
    if snapshot.failed_repositories:
        text.append(f"  ({len(snapshot.failed_repositories)} could not be scanned)", style="red")
    if snapshot.missing_commit_count:
        text.append(
            f"  Warning: {snapshot.missing_commit_count} commits could not be read; history may be incomplete",
            style="yellow",
        )
    return text


def commit_detail(commit: CommitRecord, repo: RepositoryHandle, diff_text: str = "") -> RenderableType:
    header = Text()
    header.append(f"Repo:       {repo.relative_path}\n", style="red")
    header.append(f"Id:         {commit.commit_id}\n", style="blue")
    header.append(f"Author:     {commit.author_name} <{commit.author_email}>\n", style="cyan")
    header.append(f"Commit:     {commit.committer_name}\n", style="green")
    header.append(f"CommitDate: {format_commit_time(commit.commit_time)}\n", style="blue")

    parts: list[RenderableType] = [header, Text(commit.message.rstrip("\n")), Rule(characters="-")]
    if diff_text.strip():
        parts.append(Syntax(diff_text, "diff", theme="ansi_dark", word_wrap=False))
    return Group(*parts)


def render_history(
    console: Console,
    snapshot: HistorySnapshot,
    *,
    sort: str = "date",
    reverse: bool = False,
    limit: int | None = None,
) -> None:
    if snapshot.commits:
        console.print(history_table(snapshot, sorted_commits(snapshot, sort, reverse=reverse), limit=limit))
    console.print(status_line(snapshot))
