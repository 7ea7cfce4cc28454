from __future__ import annotations

import csv
import logging
from pathlib import Path

import pandas as pd

from repo_history.common.time_utils import format_commit_time
from repo_history.domain.entities import HistorySnapshot

logger = logging.getLogger(__name__)

COLUMNS = ["Commit Date", "Local Path of Repo", "Commit Author", "Summary", "Message"]
SHEET_NAME = "repo-history report"
SUPPORTED_SUFFIXES = (".csv", ".ods", ".xlsx")

_EXCEL_ENGINES = {".ods": "odf", ".xlsx": "openpyxl"}


class ReportError(RuntimeError):
    pass


def report_rows(snapshot: HistorySnapshot) -> list[list[str]]:
    rows: list[list[str]] = []
    for commit in snapshot.commits:
        rows.append(
            [
                format_commit_time(commit.commit_time),
                snapshot.repository_of(commit).relative_path,
                commit.author_name,
                commit.summary,
                commit.message,
            ]
        )
    return rows


def write_csv(path: Path, rows: list[list[str]]) -> None:
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(COLUMNS)
        writer.writerows(rows)


def write_spreadsheet(path: Path, rows: list[list[str]]) -> None:
    engine = _EXCEL_ENGINES[path.suffix.lower()]
    frame = pd.DataFrame(rows, columns=COLUMNS, dtype=str)
    frame.to_excel(path, sheet_name=SHEET_NAME, index=False, engine=engine)


def generate(snapshot: HistorySnapshot, output_path: str | Path) -> int:
    """Write the snapshot's commits to a report; the format follows the file ending.

    Returns the number of records written.
    """
    path = Path(output_path).expanduser()
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ReportError(
            "Couldn't derive report format from filename. Supported endings are: " + ", ".join(SUPPORTED_SUFFIXES)
        )

    rows = report_rows(snapshot)
    try:
        if suffix == ".csv":
            write_csv(path, rows)
        else:
            write_spreadsheet(path, rows)
    except (OSError, ValueError) as exc:
        raise ReportError(f"Failed to write {suffix} file {path}: {exc}") from exc

    logger.info("Wrote %d records to %s", len(rows), path)
    return len(rows)
