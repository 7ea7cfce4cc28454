from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from repo_history.adapters.git.git_ops import GitError, GitRepository
from repo_history.adapters.manifest import ManifestError, load_repositories
from repo_history.common.logging_config import configure_logging
from repo_history.domain.entities import RepositoryHandle
from repo_history.pipeline.aggregator import HistoryAggregator, PoolConstructionFailed
from repo_history.pipeline.config import AppConfig, ConfigError, default_config_path, load_config, write_default_config
from repo_history.pipeline.progress import LoggingProgressSink
from repo_history.pipeline.progress_ui import RichProgressSink, progress_ui
from repo_history.pipeline.scanner import to_record
from repo_history.presentation.commands import CommandError, execute_on_commit
from repo_history.presentation.views import commit_detail, render_history
from repo_history.reports.report import ReportError, generate

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="Recent history across all repositories of a repo manifest.")

# click reserves 2 for usage errors
EXIT_FATAL = 3


class SortColumn(str, Enum):
    date = "date"
    repo = "repo"
    committer = "committer"
    summary = "summary"


def _fail(message: str, code: int = 1) -> typer.Exit:
    typer.secho(message, err=True, fg=typer.colors.RED)
    return typer.Exit(code=code)


def _load_config(path: Optional[Path]) -> AppConfig:
    try:
        return load_config(path)
    except ConfigError as exc:
        raise _fail(str(exc))


def _repositories(cwd: Path) -> list[RepositoryHandle]:
    try:
        return load_repositories(cwd)
    except ManifestError as exc:
        raise _fail(str(exc))


def _locate_commit(repos: list[RepositoryHandle], commit: str) -> tuple[RepositoryHandle, str]:
    """Find the single repository that knows ``commit`` (full id or unique prefix)."""
    matches: list[tuple[RepositoryHandle, str]] = []
    for repo in repos:
        try:
            with GitRepository.open(repo.abs_path) as git_repo:
                commit_id = git_repo.find_commit_id(commit)
        except GitError as exc:
            logger.debug("Skipping %s: %s", repo.relative_path, exc)
            continue
        except ValueError as exc:
            raise typer.BadParameter(str(exc))
        if commit_id is not None:
            matches.append((repo, commit_id))

    if not matches:
        raise _fail(f"Commit {commit} not found in any of {len(repos)} repositories")
    if len(matches) > 1:
        where = ", ".join(r.relative_path for r, _ in matches)
        raise _fail(f"Commit {commit} is ambiguous, found in: {where}")
    return matches[0]


@app.command()
def log(
    days: Optional[int] = typer.Option(None, "--days", "-d", min=0, help="Include history of the last <n> days."),
    cwd: Path = typer.Option(Path("."), "--cwd", "-C", help="Change working directory (mostly useful for testing)."),
    author: Optional[str] = typer.Option(None, "--author", "-a", help="Only commits whose author name or email contains this."),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Only commits whose message contains this."),
    first_parent: Optional[bool] = typer.Option(
        None,
        "--first-parent/--all-parents",
        help="Follow only the first parent of merge commits.",
    ),
    jobs: Optional[int] = typer.Option(None, "--jobs", "-j", min=1, help="Number of repositories scanned in parallel."),
    sort: SortColumn = typer.Option(SortColumn.date, "--sort", help="Column to order the table by."),
    reverse: bool = typer.Option(False, "--reverse", help="Reverse the table order."),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Show at most <n> rows."),
    report: Optional[Path] = typer.Option(None, "--report", "-r", help="Also write a .csv, .ods or .xlsx report."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to config.toml."),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Live progress bars, or plain log lines."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr."),
    log_dir: Optional[str] = typer.Option(None, "--log-dir", help="Also write logs to <dir>/repo-history.log."),
) -> None:
    """Show the merged commit history of all repositories in the manifest."""
    level = logging.DEBUG if verbose else (logging.WARNING if progress else logging.INFO)
    configure_logging(level, log_dir=log_dir)
    cfg = _load_config(config)

    overrides = {"days": days, "author": author, "message": message, "first_parent": first_parent}
    history = cfg.history.model_copy(update={k: v for k, v in overrides.items() if v is not None})
    workers = jobs or cfg.scan.worker_count()
    repos = _repositories(cwd)

    aggregator = HistoryAggregator(
        classifier_config=history.to_classifier_config(),
        strategy=history.walk_strategy(),
        max_workers=workers,
    )
    try:
        if progress:
            with progress_ui() as ui:
                aggregator.progress = RichProgressSink(ui=ui)
                snapshot = aggregator.collect(repos)
        else:
            aggregator.progress = LoggingProgressSink()
            snapshot = aggregator.collect(repos)
    except PoolConstructionFailed as exc:
        raise _fail(f"Fatal: {exc}", code=EXIT_FATAL)

    render_history(Console(), snapshot, sort=sort.value, reverse=reverse, limit=limit)

    if report is not None:
        try:
            written = generate(snapshot, report)
        except ReportError as exc:
            raise _fail(str(exc))
        typer.echo(f"Wrote {written} records to {report}")


@app.command()
def show(
    commit: str = typer.Argument(..., help="Commit id or unique prefix."),
    cwd: Path = typer.Option(Path("."), "--cwd", "-C", help="Change working directory."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Print a commit's details and diff."""
    configure_logging(logging.DEBUG if verbose else logging.WARNING)
    repo, commit_id = _locate_commit(_repositories(cwd), commit)
    try:
        with GitRepository.open(repo.abs_path) as git_repo:
            raw = git_repo.resolve(commit_id)
            diff_text = git_repo.diff(commit_id)
    except GitError as exc:
        raise _fail(str(exc))
    Console().print(commit_detail(to_record(0, raw), repo, diff_text))


@app.command()
def run(
    key: str = typer.Argument(..., help="Key of a [[custom_command]] from the config."),
    commit: str = typer.Argument(..., help="Commit id or unique prefix."),
    cwd: Path = typer.Option(Path("."), "--cwd", "-C", help="Change working directory."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to config.toml."),
) -> None:
    """Run a configured custom command on a commit."""
    configure_logging(logging.WARNING)
    cfg = _load_config(config)
    command = cfg.command_for(key)
    if command is None:
        keys = ", ".join(c.key for c in cfg.custom_command) or "none"
        raise typer.BadParameter(f"No custom command bound to {key!r} (configured: {keys})")

    repo, commit_id = _locate_commit(_repositories(cwd), commit)
    try:
        execute_on_commit(command, commit_id, repo.abs_path)
    except CommandError as exc:
        raise _fail(str(exc))
    typer.echo(f"Started {command.executable} for {commit_id[:12]} in {repo.relative_path}")


@app.command()
def init_config(
    path: Optional[str] = typer.Argument(None, help="Where to write config.toml (default: user config folder)."),
) -> None:
    """Write the default config.toml."""
    out = Path(path).expanduser() if path else default_config_path()
    if out.exists():
        raise typer.BadParameter(f"Refusing to overwrite existing file: {out}")
    written = write_default_config(out)
    typer.echo(f"Wrote {written} (edit it, then run: repo-history log)")


if __name__ == "__main__":
    app()
