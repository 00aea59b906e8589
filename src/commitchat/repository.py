"""Repository Service — the git operations a chat needs.

The engine only talks to the ``RepositoryService`` protocol. The shipped
implementation shells out to the ``git`` CLI; every call is blocking and is
run through ``asyncio.to_thread`` by its callers.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from commitchat.errors import (
    AlreadyExistsError,
    AuthenticationError,
    EmptyRemoteError,
    GitCommandError,
    NoParentCommitError,
    PushRejectedError,
    RepositoryError,
    UnknownHostKeyError,
)
from commitchat.logger import logger

_SUBPROCESS_TIMEOUT = 30

# Every field of a ``git log`` record is NUL-terminated; commit messages
# cannot contain NUL.
_SEP = "\x00"
_LOG_FORMAT = "--format=%x00%H%x00%an%x00%at%x00%ct%x00%B%x00"
_LOG_FIELDS = 6


@dataclass(frozen=True)
class Author:
    name: str
    email: str


@dataclass(frozen=True)
class PullResult:
    """Outcome of a pull. ``new_commits == 0`` means the clone was already up to date."""

    new_commits: int

    @property
    def up_to_date(self) -> bool:
        return self.new_commits == 0


@dataclass(frozen=True)
class CommitRecord:
    """One commit as seen by ``log``."""

    sha: str
    message: str
    author_name: str
    author_time: datetime
    committer_time: datetime
    files: tuple[str, ...] = field(default=())

    def touches(self, path: str) -> bool:
        return path in self.files


class RepositoryService(Protocol):
    """Blocking repository operations on a local working copy.

    The working-copy path is the handle. ``log`` returns newest first.
    """

    def clone(self, url: str, path: Path) -> Path: ...

    def init(self, path: Path, url: str) -> Path: ...

    def open(self, path: Path) -> Path: ...

    def is_repository(self, path: Path) -> bool: ...

    def pull(self, path: Path) -> PullResult: ...

    def head(self, path: Path) -> str | None: ...

    def log(self, path: Path, since: str | None = None) -> list[CommitRecord]: ...

    def commit(
        self, path: Path, message: str, *, author: Author, file: str | None = None
    ) -> str: ...

    def push(self, path: Path) -> None: ...

    def reset_to_parent(self, path: Path) -> None: ...


# ---------------------------------------------------------------------------
# git CLI implementation
# ---------------------------------------------------------------------------


def run_git(
    *args: str,
    cwd: Path | None = None,
    timeout: int = _SUBPROCESS_TIMEOUT,
    env: dict[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a git command with standard timeout and error capture.

    Args:
        env: Optional environment dict for remote-facing git calls (clone,
            pull, push). Local-only git calls don't need this. When provided,
            overrides the inherited environment.
    """
    return subprocess.run(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        capture_output=True,
        text=True,
        timeout=timeout,
        env=env,
    )


def require_success(result: subprocess.CompletedProcess[str], command: str) -> str:
    """Assert that a git command succeeded, raising GitCommandError otherwise.

    Returns the stripped stdout on success.
    """
    if result.returncode != 0:
        raise GitCommandError(command, result.stderr.strip(), result.returncode)
    return result.stdout.strip()


def remote_git_env() -> dict[str, str]:
    """Environment for remote-facing git calls.

    Never prompt: an unknown host key or missing credentials must fail fast
    so the caller can ask the operator instead of hanging a poll cycle.
    """
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    env.setdefault(
        "GIT_SSH_COMMAND", "ssh -o BatchMode=yes -o StrictHostKeyChecking=yes"
    )
    return env


_HOST_KEY_MARKERS = ("host key verification failed", "host key is known")
_AUTH_MARKERS = (
    "authentication failed",
    "permission denied",
    "could not read username",
    "could not read password",
)
_REJECTED_MARKERS = ("[rejected]", "non-fast-forward", "failed to push some refs")


def classify_remote_failure(
    result: subprocess.CompletedProcess[str], command: str, url: str | None = None
) -> RepositoryError:
    """Map a failed remote-facing git call to a typed error."""
    stderr = result.stderr.strip()
    lowered = stderr.lower()
    if any(marker in lowered for marker in _HOST_KEY_MARKERS):
        from commitchat.known_hosts import host_of

        return UnknownHostKeyError(host_of(url) if url else "unknown")
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return AuthenticationError(stderr)
    if any(marker in lowered for marker in _REJECTED_MARKERS):
        return PushRejectedError(stderr)
    return GitCommandError(command, stderr, result.returncode)


def parse_log(output: str) -> list[CommitRecord]:
    """Parse ``git log`` output produced with ``_LOG_FORMAT --name-only``."""
    if not output:
        return []
    # Leading token precedes the first record; each record is then
    # sha, author, author time, committer time, body, changed files.
    tokens = output.split(_SEP)[1:]
    if len(tokens) % _LOG_FIELDS:
        raise GitCommandError("log", "unexpected log output", -1)

    records: list[CommitRecord] = []
    for i in range(0, len(tokens), _LOG_FIELDS):
        sha, author, author_ts, committer_ts, body, files_blob = tokens[i : i + _LOG_FIELDS]
        records.append(
            CommitRecord(
                sha=sha,
                message=body.strip("\n"),
                author_name=author,
                author_time=datetime.fromtimestamp(int(author_ts), UTC),
                committer_time=datetime.fromtimestamp(int(committer_ts), UTC),
                files=tuple(line for line in files_blob.splitlines() if line.strip()),
            )
        )
    return records


class GitRepositoryService:
    """RepositoryService backed by the ``git`` executable."""

    def __init__(self, default_branch: str = "main", timeout: int = _SUBPROCESS_TIMEOUT) -> None:
        self.default_branch = default_branch
        self.timeout = timeout

    def _git(
        self, *args: str, cwd: Path | None = None, remote: bool = False
    ) -> subprocess.CompletedProcess[str]:
        try:
            return run_git(
                *args,
                cwd=cwd,
                timeout=self.timeout,
                env=remote_git_env() if remote else None,
            )
        except subprocess.TimeoutExpired as exc:
            raise GitCommandError(args[0], f"timed out after {self.timeout}s", -1) from exc
        except OSError as exc:
            raise GitCommandError(args[0], str(exc), -1) from exc

    def is_repository(self, path: Path) -> bool:
        return (path / ".git").exists()

    def clone(self, url: str, path: Path) -> Path:
        if self.is_repository(path):
            raise AlreadyExistsError(str(path))
        path.parent.mkdir(parents=True, exist_ok=True)

        result = self._git("clone", url, str(path), cwd=path.parent, remote=True)
        if result.returncode != 0:
            if "already exists" in result.stderr:
                raise AlreadyExistsError(str(path))
            raise classify_remote_failure(result, "clone", url)

        if self.head(path) is None:
            # git happily clones an empty remote; callers want to init instead
            shutil.rmtree(path, ignore_errors=True)
            raise EmptyRemoteError(url)

        logger.info("Cloned chat repository", url=url, path=str(path))
        return path

    def init(self, path: Path, url: str) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        require_success(
            self._git("init", f"--initial-branch={self.default_branch}", cwd=path), "init"
        )
        require_success(self._git("remote", "add", "origin", url, cwd=path), "remote add")
        logger.info(
            "Initialized chat repository for empty remote",
            url=url,
            branch=self.default_branch,
        )
        return path

    def open(self, path: Path) -> Path:
        if not self.is_repository(path):
            raise RepositoryError(f"{path} is not a git working copy")
        return path

    def head(self, path: Path) -> str | None:
        result = self._git("rev-parse", "--verify", "-q", "HEAD", cwd=path)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def pull(self, path: Path) -> PullResult:
        before = self.head(path)
        result = self._git("pull", "--ff-only", "--quiet", cwd=path, remote=True)
        if result.returncode != 0:
            raise classify_remote_failure(result, "pull")

        after = self.head(path)
        if after is None or after == before:
            return PullResult(new_commits=0)
        rev_range = f"{before}..{after}" if before else after
        count = require_success(self._git("rev-list", "--count", rev_range, cwd=path), "rev-list")
        return PullResult(new_commits=int(count or "0"))

    def log(self, path: Path, since: str | None = None) -> list[CommitRecord]:
        if self.head(path) is None:
            return []
        rev = f"{since}..HEAD" if since else "HEAD"
        result = self._git("log", _LOG_FORMAT, "--name-only", rev, "--", cwd=path)
        if result.returncode != 0:
            raise GitCommandError("log", result.stderr.strip(), result.returncode)
        return parse_log(result.stdout)

    def commit(
        self, path: Path, message: str, *, author: Author, file: str | None = None
    ) -> str:
        if file is not None:
            require_success(self._git("add", "--", file, cwd=path), "add")

        args = [
            "-c",
            f"user.name={author.name}",
            "-c",
            f"user.email={author.email}",
            "commit",
            "--cleanup=whitespace",
            "-m",
            message,
        ]
        if file is None:
            args.append("--allow-empty")
        require_success(self._git(*args, cwd=path), "commit")

        sha = self.head(path)
        if sha is None:
            raise GitCommandError("commit", "HEAD missing after commit", -1)
        return sha

    def push(self, path: Path) -> None:
        result = self._git("push", "--set-upstream", "origin", "HEAD", cwd=path, remote=True)
        if result.returncode != 0:
            raise classify_remote_failure(result, "push")

    def reset_to_parent(self, path: Path) -> None:
        parent = self._git("rev-parse", "--verify", "-q", "HEAD^", cwd=path)
        if parent.returncode != 0:
            raise NoParentCommitError(str(path))
        require_success(self._git("reset", "--hard", "HEAD^", cwd=path), "reset")
