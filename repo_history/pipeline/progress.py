from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class NullProgressSink:
    def begin(self, total: int) -> None:
        return

    def label(self, slot: int, text: str) -> None:
        return

    def tick(self) -> None:
        return

    def log(self, repo_path: str, message: str, error: BaseException | None = None) -> None:
        return


@dataclass
class LoggingProgressSink:
    """Report scan progress as log lines, e.g. for non-interactive runs."""

    every: int = 10
    total: int = 0
    completed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def begin(self, total: int) -> None:
        with self._lock:
            self.total = total
            self.completed = 0
        logger.info("Scanning %d repositories", total)

    def label(self, slot: int, text: str) -> None:
        logger.debug("[%d] %s", slot, text)

    def tick(self) -> None:
        with self._lock:
            self.completed += 1
            done, total = self.completed, self.total
        if done % max(1, self.every) == 0 or done == total:
            logger.info("Scanned %d of %d repositories", done, total)

    def log(self, repo_path: str, message: str, error: BaseException | None = None) -> None:
        if error is None:
            logger.error("%s: %s", message, repo_path)
        else:
            logger.error("%s: %s: %s", message, repo_path, error)
