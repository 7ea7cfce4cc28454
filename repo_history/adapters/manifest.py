from __future__ import annotations

import logging
from pathlib import Path

from repo_history.domain.entities import RepositoryHandle

logger = logging.getLogger(__name__)

MANIFEST_DIR = ".repo"
PROJECT_LIST = "project.list"


class ManifestError(RuntimeError):
    pass


def find_repo_base_folder(start: Path | None = None) -> Path:
    """Return the folder containing ``.repo``, searching ``start`` and its ancestors."""
    cwd = (start or Path.cwd()).expanduser().resolve()
    for folder in (cwd, *cwd.parents):
        if (folder / MANIFEST_DIR).is_dir():
            return folder
    raise ManifestError(f"no {MANIFEST_DIR} folder found in {cwd} or any parent folder")


def find_project_file(start: Path | None = None) -> Path:
    project_file = find_repo_base_folder(start) / MANIFEST_DIR / PROJECT_LIST
    if not project_file.is_file():
        raise ManifestError(f"no {PROJECT_LIST} in {project_file.parent} found")
    return project_file


def read_project_list(project_file: Path, base_folder: Path) -> list[RepositoryHandle]:
    """One repository per non-blank line, relative to ``base_folder``, in file order."""
    try:
        lines = project_file.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        raise ManifestError(f"Failed to read {project_file}: {exc}") from exc

    repos: list[RepositoryHandle] = []
    for line in lines:
        rel_path = line.strip()
        if not rel_path:
            continue
        repos.append(RepositoryHandle.from_paths(base_folder / rel_path, rel_path))
    logger.debug("Read %d projects from %s", len(repos), project_file)
    return repos


def load_repositories(start: Path | None = None) -> list[RepositoryHandle]:
    base_folder = find_repo_base_folder(start)
    return read_project_list(find_project_file(base_folder), base_folder)
