from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

from repo_history.pipeline.config import CustomCommand

logger = logging.getLogger(__name__)

PLACEHOLDER = "{}"


class CommandError(RuntimeError):
    pass


def command_line(command: CustomCommand, commit_id: str) -> list[str]:
    args = (command.args or "").replace(PLACEHOLDER, commit_id)
    return [command.executable, *shlex.split(args)]


def execute_on_commit(command: CustomCommand, commit_id: str, cwd: Path) -> subprocess.Popen[bytes]:
    """Launch a custom command for a commit, detached from our terminal streams."""
    try:
        argv = command_line(command, commit_id)
        logger.info("Running %s in %s", argv, cwd)
        return subprocess.Popen(
            argv,
            cwd=str(cwd),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except (OSError, ValueError) as exc:
        raise CommandError(f"Failed to run {command.executable}: {exc}") from exc
