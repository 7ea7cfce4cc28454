from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import NamedTuple, Protocol

from repo_history.common.time_utils import age_in_days


class CommitMetadata(Protocol):
    author_name: str
    author_email: str
    message: str
    commit_time: datetime


class Classification(NamedTuple):
    include: bool
    abort_walk: bool


def _fold(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value.casefold() if value else None


@dataclass(frozen=True)
class ClassifierConfig:
    """Which commits belong in the history.

    Substring patterns are case-folded once here; empty patterns mean
    "no filter".
    """

    max_age_days: int = 10
    author_substring: str | None = None
    message_substring: str | None = None

    def __post_init__(self) -> None:
        if int(self.max_age_days) < 0:
            raise ValueError(f"max_age_days must be non-negative, got {self.max_age_days}")
        object.__setattr__(self, "max_age_days", int(self.max_age_days))
        object.__setattr__(self, "author_substring", _fold(self.author_substring))
        object.__setattr__(self, "message_substring", _fold(self.message_substring))


@dataclass(frozen=True)
class Classifier:
    """Decide per commit whether to keep it and whether the walk can stop.

    Walks visit commits newest first, so once a commit is older than
    ``max_age_days`` every later commit of that walk is as well. ``abort_walk``
    therefore follows the age test alone; author and message filters only
    affect ``include``.
    """

    config: ClassifierConfig
    now: datetime

    @classmethod
    def create(cls, config: ClassifierConfig, now: datetime | None = None) -> "Classifier":
        return cls(config=config, now=now or datetime.now(tz=timezone.utc))

    def classify(self, commit: CommitMetadata) -> Classification:
        age_ok = age_in_days(commit.commit_time, self.now) <= self.config.max_age_days
        if not age_ok:
            return Classification(include=False, abort_walk=True)

        author = self.config.author_substring
        if author is not None:
            name = (commit.author_name or "").casefold()
            email = (commit.author_email or "").casefold()
            if author not in name and author not in email:
                return Classification(include=False, abort_walk=False)

        message = self.config.message_substring
        if message is not None and message not in (commit.message or "").casefold():
            return Classification(include=False, abort_walk=False)

        return Classification(include=True, abort_walk=False)
