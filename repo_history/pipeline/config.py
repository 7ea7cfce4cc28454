from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import typer
from pydantic import BaseModel, Field, field_validator

from repo_history.domain.classifier import ClassifierConfig
from repo_history.domain.entities import WalkStrategy
from repo_history.pipeline.aggregator import DEFAULT_WORKER_CEILING, default_worker_count

APP_NAME = "repo-history"

DEFAULT_CONFIG = """\
# History section:
#
# Defaults for which commits are shown; command-line options win.
[history]
days = 10
# author = "alice"
# message = "fix"
first_parent = false

# Scan section:
#
# jobs = 0 picks one worker per CPU, capped at worker_ceiling.
[scan]
jobs = 0
worker_ceiling = 16

# Custom command section:
#
# You can map keys to custom commands. These commands are
# executed with disconnected stdin/stdout pipes. If you want to
# execute a shell command, wrap the command into a new terminal
# process. The args field allows substitution of {} with the ID
# of the selected commit.

# Start gitk on 'i', with the selected commit preselected.
[[custom_command]]
key = "i"
executable = "gitk"
args = "--select-commit={}"

# Execute git show in a separate terminal window
[[custom_command]]
key = "d"
executable = "gnome-terminal"
args = "-- git show {}"
"""


class ConfigError(RuntimeError):
    pass


def _expand(path: str | Path) -> Path:
    return Path(os.path.expanduser(str(path))).resolve()


def _loads_toml(text: str) -> dict[str, Any]:
    """Parse TOML into a dict, supporting Python 3.10+.

    Uses tomllib when available, falls back to tomli.
    """
    try:
        import tomllib  # type: ignore[attr-defined]

        return tomllib.loads(text)
    except ModuleNotFoundError:
        import tomli  # type: ignore[import-not-found]

        return tomli.loads(text)


def _read_toml(path: Path) -> dict[str, Any]:
    return _loads_toml(path.read_bytes().decode("utf-8"))


class HistoryConfig(BaseModel):
    """Which commits end up in the history."""

    days: int = Field(default=10, ge=0, description="Include commits of the last <n> days.")
    author: str | None = Field(default=None, description="Substring of author name or email.")
    message: str | None = Field(default=None, description="Substring of the commit message.")
    first_parent: bool = Field(default=False, description="Follow only the first parent of merges.")

    @field_validator("author", "message", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def to_classifier_config(self) -> ClassifierConfig:
        return ClassifierConfig(
            max_age_days=self.days,
            author_substring=self.author,
            message_substring=self.message,
        )

    def walk_strategy(self) -> WalkStrategy:
        return WalkStrategy.FIRST_PARENT if self.first_parent else WalkStrategy.ALL_PARENTS


class ScanConfig(BaseModel):
    jobs: int = Field(default=0, ge=0, description="Worker count; 0 means automatic.")
    worker_ceiling: int = Field(default=DEFAULT_WORKER_CEILING, ge=1)

    def worker_count(self) -> int:
        if self.jobs > 0:
            return self.jobs
        return default_worker_count(self.worker_ceiling)


class CustomCommand(BaseModel):
    key: str
    executable: str
    args: str | None = None

    @field_validator("key")
    @classmethod
    def _single_character(cls, value: str) -> str:
        if len(value) != 1:
            raise ValueError(f"key must be a single character, got {value!r}")
        return value

    @field_validator("executable")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("executable must not be empty")
        return value


class AppConfig(BaseModel):
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    custom_command: list[CustomCommand] = Field(default_factory=list)

    @classmethod
    def load(cls, path: Path) -> "AppConfig":
        try:
            raw = _read_toml(path)
        except OSError as exc:
            raise ConfigError(f"Error reading config file {path}: {exc}") from exc
        except ValueError as exc:
            raise ConfigError(f"Error parsing config file {path}: {exc}") from exc
        try:
            return cls.model_validate(raw)
        except ValueError as exc:
            raise ConfigError(f"Error parsing config file {path}: {exc}") from exc

    @classmethod
    def default(cls) -> "AppConfig":
        return cls.model_validate(_loads_toml(DEFAULT_CONFIG))

    def command_for(self, key: str) -> CustomCommand | None:
        for cmd in self.custom_command:
            if cmd.key == key:
                return cmd
        return None


def default_config_path() -> Path:
    return Path(typer.get_app_dir(APP_NAME)) / "config.toml"


def write_default_config(path: Path) -> Path:
    out = _expand(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(DEFAULT_CONFIG, encoding="utf-8")
    return out


def load_config(path: Path | None = None) -> AppConfig:
    """Load the config file, creating the default one on first use."""
    if path is not None:
        return AppConfig.load(_expand(path))
    config_file = default_config_path()
    if not config_file.is_file():
        try:
            write_default_config(config_file)
        except OSError as exc:
            raise ConfigError(f"Failed to write config file {config_file}: {exc}") from exc
    return AppConfig.load(config_file)
