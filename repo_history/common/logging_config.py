from __future__ import annotations

import logging
from pathlib import Path
from typing import Final


DEFAULT_LOG_FORMAT: Final[str] = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: int = logging.WARNING, log_dir: str | None = None) -> None:
    """Configure standard library logging for the CLI.

    Scan progress and repository errors go to the terminal through the
    progress UI, so stderr logging stays quiet unless asked for. If log_dir
    is provided, everything at ``level`` is also written to
    '<log_dir>/repo-history.log'.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir is not None:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(Path(log_dir) / "repo-history.log", encoding="utf-8"))

    logging.basicConfig(level=level, format=DEFAULT_LOG_FORMAT, handlers=handlers, force=True)
