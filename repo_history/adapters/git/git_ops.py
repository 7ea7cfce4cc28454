from __future__ import annotations

import logging
import os
import re
import subprocess
import threading
from pathlib import Path
from typing import IO, Iterator

from repo_history.common.time_utils import from_git_time, parse_git_offset
from repo_history.domain.entities import RawCommit, WalkStrategy

logger = logging.getLogger(__name__)

# Well-known id of the tree with no entries; git resolves it without it being stored.
EMPTY_TREE_ID = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

_SIGNATURE_RE = re.compile(r"^(?P<name>.*?) ?<(?P<email>[^>]*)> (?P<seconds>-?\d+)(?: (?P<offset>[+-]\d{4}))?$")
_COMMIT_PREFIX_RE = re.compile(r"^[0-9a-fA-F]{4,64}$")
_MAX_STDERR_CHARS = 20_000


class GitError(RuntimeError):
    pass


class RepositoryUnavailable(GitError):
    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Failed to open repository {path}: {reason}")
        self.path = path
        self.reason = reason


class WalkCreationFailed(GitError):
    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Failed to walk history of {path}: {reason}")
        self.path = path
        self.reason = reason


class CommitUnresolvable(GitError):
    def __init__(self, commit_id: str, reason: str) -> None:
        super().__init__(f"Failed to find commit {commit_id}: {reason}")
        self.commit_id = commit_id
        self.reason = reason


def _git_env(repo_path: Path) -> dict[str, str]:
    env = dict(os.environ)
    for var in ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE", "GIT_OBJECT_DIRECTORY"):
        env.pop(var, None)
    # Only the given directory may be the repository, never one of its ancestors.
    env["GIT_CEILING_DIRECTORIES"] = str(repo_path.parent)
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


def _run_git(
    repo_path: Path,
    args: list[str],
    *,
    env: dict[str, str] | None = None,
    timeout_s: int = 300,
) -> tuple[int, str, str]:
    proc = subprocess.run(
        ["git", "-C", str(repo_path), *args],
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
        env=env,
        timeout=timeout_s,
    )
    return proc.returncode, proc.stdout, proc.stderr


def _parse_signature(commit_id: str, raw: str) -> tuple[str, str, int, int]:
    m = _SIGNATURE_RE.match(raw.strip())
    if m is None:
        raise CommitUnresolvable(commit_id, f"malformed signature {raw!r}")
    offset = parse_git_offset(m.group("offset")) if m.group("offset") else 0
    return m.group("name"), m.group("email"), int(m.group("seconds")), offset


def parse_commit_object(commit_id: str, data: bytes) -> RawCommit:
    """Parse the raw bytes of a commit object (``git cat-file commit``)."""
    header_blob, _, body = data.partition(b"\n\n")
    headers: dict[str, list[bytes]] = {}
    for line in header_blob.split(b"\n"):
        if not line or line.startswith(b" "):
            # continuation of a multi-line header (gpgsig, mergetag)
            continue
        key, _, value = line.partition(b" ")
        headers.setdefault(key.decode("ascii", "replace"), []).append(value)

    if "author" not in headers or "committer" not in headers:
        raise CommitUnresolvable(commit_id, "malformed commit object")

    encoding = "utf-8"
    if "encoding" in headers:
        encoding = headers["encoding"][0].decode("ascii", "replace").strip() or "utf-8"

    def text(raw: bytes) -> str:
        try:
            return raw.decode(encoding, errors="replace")
        except LookupError:
            return raw.decode("utf-8", errors="replace")

    a_name, a_email, a_seconds, a_offset = _parse_signature(commit_id, text(headers["author"][0]))
    c_name, c_email, c_seconds, c_offset = _parse_signature(commit_id, text(headers["committer"][0]))
    parents = tuple(p.decode("ascii", "replace").strip() for p in headers.get("parent", []))

    try:
        author_time = from_git_time(a_seconds, a_offset)
        commit_time = from_git_time(c_seconds, c_offset)
    except (ValueError, OverflowError, OSError) as exc:
        raise CommitUnresolvable(commit_id, f"unusable timestamp: {exc}") from exc

    return RawCommit(
        commit_id=commit_id,
        parents=parents,
        author_name=a_name,
        author_email=a_email,
        author_time=author_time,
        committer_name=c_name,
        committer_email=c_email,
        commit_time=commit_time,
        message=text(body),
    )


def _drain(stream: IO[str] | None, chunks: list[str]) -> None:
    if stream is None:
        return
    taken = 0
    while True:
        chunk = stream.read(8192)
        if not chunk:
            return
        if taken >= _MAX_STDERR_CHARS:
            continue
        chunk = chunk[: _MAX_STDERR_CHARS - taken]
        chunks.append(chunk)
        taken += len(chunk)


class GitRepository:
    """Read-only view of a local repository through the git CLI.

    ``walk`` streams ``git rev-list`` so an early stop never pays for the rest
    of the history. ``resolve`` keeps one ``git cat-file --batch`` process
    per repository. Instances are not thread-safe; one scan owns one instance.
    """

    def __init__(self, path: Path, git_dir: Path) -> None:
        self.path = path
        self.git_dir = git_dir
        self._env = _git_env(path)
        self._batch: subprocess.Popen[bytes] | None = None

    @classmethod
    def open(cls, path: Path) -> "GitRepository":
        path = Path(path).expanduser()
        if not path.is_dir():
            raise RepositoryUnavailable(path, "no such directory")
        path = path.resolve()
        try:
            code, out, err = _run_git(path, ["rev-parse", "--absolute-git-dir"], env=_git_env(path))
        except (OSError, subprocess.SubprocessError) as exc:
            raise RepositoryUnavailable(path, str(exc)) from exc
        if code != 0:
            raise RepositoryUnavailable(path, err.strip() or "not a git repository")
        return cls(path, Path(out.strip()))

    def __enter__(self) -> "GitRepository":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def head(self) -> str:
        code, out, err = _run_git(self.path, ["rev-parse", "--verify", "--quiet", "HEAD^{commit}"], env=self._env)
        if code != 0 or not out.strip():
            raise WalkCreationFailed(self.path, err.strip() or "HEAD does not point to a commit")
        return out.strip()

    def walk(self, strategy: WalkStrategy) -> Iterator[str]:
        """Start a walk from HEAD; creation errors are raised here, not on first ``next``."""
        try:
            head = self.head()
        except (OSError, subprocess.SubprocessError) as exc:
            raise WalkCreationFailed(self.path, str(exc)) from exc

        cmd = ["git", "-C", str(self.path), "rev-list"]
        if strategy is WalkStrategy.FIRST_PARENT:
            cmd.append("--first-parent")
        cmd.append(head)
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=self._env,
            )
        except OSError as exc:
            raise WalkCreationFailed(self.path, str(exc)) from exc
        return self._iter_walk(proc)

    def _iter_walk(self, proc: subprocess.Popen[str]) -> Iterator[str]:
        stderr_chunks: list[str] = []
        stderr_thread = threading.Thread(target=_drain, args=(proc.stderr, stderr_chunks), daemon=True)
        stderr_thread.start()

        completed = False
        try:
            assert proc.stdout is not None
            for line in proc.stdout:
                commit_id = line.strip()
                if commit_id:
                    yield commit_id
            completed = True
        finally:
            if not completed:
                proc.kill()
            if proc.stdout is not None:
                proc.stdout.close()
            proc.wait()
            stderr_thread.join()

        if proc.returncode != 0:
            stderr = "".join(stderr_chunks).strip()
            raise WalkCreationFailed(self.path, stderr or f"git rev-list exited {proc.returncode}")

    def _batch_process(self) -> subprocess.Popen[bytes]:
        if self._batch is None:
            try:
                self._batch = subprocess.Popen(
                    ["git", "-C", str(self.path), "cat-file", "--batch"],
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.DEVNULL,
                    env=self._env,
                )
            except OSError as exc:
                raise GitError(f"Failed to start git cat-file in {self.path}: {exc}") from exc
        return self._batch

    def resolve(self, commit_id: str) -> RawCommit:
        proc = self._batch_process()
        assert proc.stdin is not None and proc.stdout is not None
        try:
            proc.stdin.write(commit_id.encode("ascii", "replace") + b"\n")
            proc.stdin.flush()
            header = proc.stdout.readline()
        except (OSError, ValueError) as exc:
            raise GitError(f"git cat-file failed in {self.path}: {exc}") from exc
        if not header:
            raise GitError(f"git cat-file exited unexpectedly in {self.path}")

        parts = header.decode("ascii", "replace").split()
        if len(parts) != 3:
            # "<id> missing" or "<id> ambiguous"
            raise CommitUnresolvable(commit_id, parts[-1] if parts else "no reply")
        object_id, kind, size = parts
        data = proc.stdout.read(int(size) + 1)
        if len(data) != int(size) + 1:
            raise GitError(f"git cat-file returned a truncated object for {commit_id} in {self.path}")
        if kind != "commit":
            raise CommitUnresolvable(commit_id, f"object is a {kind}")
        return parse_commit_object(object_id, data[:-1])

    def find_commit_id(self, prefix: str) -> str | None:
        """Expand an abbreviated id to a full commit id, or None if unknown here."""
        if not _COMMIT_PREFIX_RE.match(prefix):
            raise ValueError(f"Not a commit id: {prefix!r}")
        code, out, _ = _run_git(self.path, ["rev-parse", "--verify", "--quiet", f"{prefix}^{{commit}}"], env=self._env)
        if code != 0 or not out.strip():
            return None
        return out.strip()

    def diff(self, commit_id: str) -> str:
        """Patch of a commit against its only parent; root and merge commits diff against the empty tree."""
        commit = self.resolve(commit_id)
        base = commit.parents[0] if len(commit.parents) == 1 else EMPTY_TREE_ID
        code, out, err = _run_git(
            self.path,
            ["diff-tree", "-p", "--no-color", "-r", base, commit.commit_id],
            env=self._env,
        )
        if code != 0:
            raise GitError(f"git diff-tree failed for {commit_id} in {self.path}: {err.strip()}")
        return out

    def close(self) -> None:
        proc = self._batch
        self._batch = None
        if proc is None:
            return
        try:
            if proc.stdin is not None:
                proc.stdin.close()
            proc.wait(timeout=5)
        except (OSError, subprocess.TimeoutExpired):
            logger.debug("Killing git cat-file for %s", self.path)
            proc.kill()
            proc.wait()
        finally:
            if proc.stdout is not None:
                proc.stdout.close()
