from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)


@dataclass(frozen=True)
class Ui:
    console: Console
    progress: Progress

    def log(self, message: str) -> None:
        self.console.print(message)


@contextmanager
def progress_ui(console: Console | None = None, *, transient: bool = True) -> Iterator[Ui]:
    console = console or Console(stderr=True)
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=transient,
    )
    with progress:
        yield Ui(console=console, progress=progress)


@dataclass
class RichProgressSink:
    """Multi-line terminal progress: one overall bar plus one line per worker slot.

    Rich serializes updates coming from several worker threads.
    """

    ui: Ui
    _overall: TaskID | None = None
    _slot_tasks: dict[int, TaskID] = field(default_factory=dict)

    def begin(self, total: int) -> None:
        self._overall = self.ui.progress.add_task("Scanned repositories", total=total)

    def label(self, slot: int, text: str) -> None:
        description = f"[dim][{slot}] {escape(text)}"
        task = self._slot_tasks.get(slot)
        if task is None:
            # A slot is only ever used by one worker at a time.
            self._slot_tasks[slot] = self.ui.progress.add_task(description, total=None)
        else:
            self.ui.progress.update(task, description=description)

    def tick(self) -> None:
        if self._overall is not None:
            self.ui.progress.advance(self._overall)

    def log(self, repo_path: str, message: str, error: BaseException | None = None) -> None:
        line = f"[red]{escape(message)}[/red]: [blue]{escape(repo_path)}[/blue]"
        if error is not None:
            line += f": {escape(str(error))}"
        self.ui.log(line)
