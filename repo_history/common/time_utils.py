from __future__ import annotations

from datetime import datetime, timedelta, timezone

COMMIT_TIME_FORMAT = "%Y-%m-%d %H:%M %z"


def fixed_offset(offset_minutes: int) -> timezone:
    return timezone(timedelta(minutes=offset_minutes))


def parse_git_offset(raw: str) -> int:
    """Convert a git '+HHMM' / '-HHMM' offset into signed minutes."""
    raw = raw.strip()
    if len(raw) != 5 or raw[0] not in "+-" or not raw[1:].isdigit():
        raise ValueError(f"Invalid timezone offset: {raw!r}")
    minutes = int(raw[1:3]) * 60 + int(raw[3:5])
    return -minutes if raw[0] == "-" else minutes


def from_git_time(epoch_seconds: int, offset_minutes: int) -> datetime:
    # git stores offsets like +2500 verbatim; Python zones must stay within a day.
    if abs(offset_minutes) >= 24 * 60:
        offset_minutes = 0
    return datetime.fromtimestamp(epoch_seconds, tz=fixed_offset(offset_minutes))


def format_commit_time(value: datetime) -> str:
    # e.g. 2024-03-01 17:05 +0100
    return value.strftime(COMMIT_TIME_FORMAT)


def age_in_days(value: datetime, now: datetime) -> int:
    """Whole days elapsed between ``value`` and ``now``, both compared in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    delta = now.astimezone(timezone.utc) - value.astimezone(timezone.utc)
    # Truncates toward zero: a commit a few hours in the future is age 0.
    seconds = int(delta.total_seconds())
    return seconds // 86400 if seconds >= 0 else -((-seconds) // 86400)
