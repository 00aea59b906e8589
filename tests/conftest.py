"""Shared test fixtures for commitchat."""

from __future__ import annotations

import itertools
import shutil
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from commitchat.errors import (
    AlreadyExistsError,
    EmptyRemoteError,
    GitCommandError,
    NoParentCommitError,
    PushRejectedError,
    RepositoryError,
    UnknownHostKeyError,
)
from commitchat.known_hosts import host_of
from commitchat.repository import Author, CommitRecord, PullResult

# ---------------------------------------------------------------------------
# Shared helpers (plain functions importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset({"home_dir", "chats_dir", "known_hosts_path"})


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Accepts both model fields (intervals, git, etc.) and cached property
    overrides (chats_dir, known_hosts_path, home_dir).

    Usage::

        s = make_settings(chats_dir=tmp_path / "chats")
        s = make_settings(intervals=IntervalsConfig(chat_poll=0.01))
    """
    from commitchat.config import (
        GitConfig,
        IntervalsConfig,
        LoggingConfig,
        NotificationsConfig,
        Settings,
        StorageConfig,
    )

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "storage": StorageConfig(),
        "intervals": IntervalsConfig(),
        "git": GitConfig(),
        "notifications": NotificationsConfig(),
        "logging": LoggingConfig(),
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


@dataclass
class FakeCommit:
    sha: str
    message: str
    author: str
    time: datetime
    files: tuple[str, ...]
    tree: dict[str, str]

    def record(self) -> CommitRecord:
        return CommitRecord(
            sha=self.sha,
            message=self.message,
            author_name=self.author,
            author_time=self.time,
            committer_time=self.time,
            files=self.files,
        )


@dataclass
class FakeClone:
    url: str
    commits: list[FakeCommit] = field(default_factory=list)


class FakeRepositoryService:
    """In-memory RepositoryService.

    Remotes are commit lists keyed by URL. Clones are commit lists keyed by
    working-copy path; tracked files are materialized on disk so the info
    file store reads and writes real files.

    Failures are injected with ``fail_on(op, exc, path=None)``; they stay
    armed until ``clear_failures()``.
    """

    def __init__(self) -> None:
        self.remotes: dict[str, list[FakeCommit]] = {}
        self.clones: dict[Path, FakeClone] = {}
        self.unknown_hosts: set[str] = set()
        self.calls: list[tuple[str, Path | str]] = []
        self._failures: list[tuple[str, Path | None, Exception]] = []
        self._shas = itertools.count(1)
        self._clock = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    # --- test helpers ---

    def create_remote(self, url: str) -> str:
        self.remotes.setdefault(url, [])
        return url

    def remote_commit(
        self,
        url: str,
        message: str,
        *,
        author: str = "bob",
        files: dict[str, str] | None = None,
    ) -> FakeCommit:
        """Simulate another participant pushing a commit."""
        history = self.remotes[url]
        tree = dict(history[-1].tree) if history else {}
        tree.update(files or {})
        commit = self._new_commit(message, author, tuple(files or ()), tree)
        history.append(commit)
        return commit

    def fail_on(self, op: str, exc: Exception, path: Path | None = None) -> None:
        self._failures.append((op, path, exc))

    def clear_failures(self) -> None:
        self._failures.clear()

    def _check(self, op: str, path: Path | str) -> None:
        self.calls.append((op, path))
        for failing_op, failing_path, exc in self._failures:
            if failing_op == op and (failing_path is None or failing_path == path):
                raise exc

    def _new_commit(
        self, message: str, author: str, files: tuple[str, ...], tree: dict[str, str]
    ) -> FakeCommit:
        self._clock += timedelta(minutes=1)
        return FakeCommit(
            sha=f"{next(self._shas):040x}",
            message=message,
            author=author,
            time=self._clock,
            files=files,
            tree=tree,
        )

    def _clone(self, path: Path) -> FakeClone:
        try:
            return self.clones[path]
        except KeyError:
            raise RepositoryError(f"{path} is not a working copy") from None

    @staticmethod
    def _checkout(path: Path, old: dict[str, str], new: dict[str, str]) -> None:
        for name in old.keys() - new.keys():
            (path / name).unlink(missing_ok=True)
        for name, content in new.items():
            (path / name).write_text(content)

    @staticmethod
    def _tree(clone: FakeClone) -> dict[str, str]:
        return dict(clone.commits[-1].tree) if clone.commits else {}

    # --- RepositoryService ---

    def clone(self, url: str, path: Path) -> Path:
        self._check("clone", path)
        if self.is_repository(path):
            raise AlreadyExistsError(str(path))
        if url in self.unknown_hosts:
            raise UnknownHostKeyError(host_of(url))
        if url not in self.remotes:
            raise GitCommandError("clone", "repository not found", 128)
        if not self.remotes[url]:
            raise EmptyRemoteError(url)

        path.mkdir(parents=True, exist_ok=True)
        clone = FakeClone(url=url, commits=list(self.remotes[url]))
        self.clones[path] = clone
        self._checkout(path, {}, self._tree(clone))
        return path

    def init(self, path: Path, url: str) -> Path:
        self._check("init", path)
        path.mkdir(parents=True, exist_ok=True)
        self.clones[path] = FakeClone(url=url)
        return path

    def open(self, path: Path) -> Path:
        self._check("open", path)
        self._clone(path)
        return path

    def is_repository(self, path: Path) -> bool:
        return path in self.clones and path.is_dir()

    def pull(self, path: Path) -> PullResult:
        self._check("pull", path)
        clone = self._clone(path)
        remote = self.remotes.get(clone.url, [])
        local = clone.commits
        if remote[: len(local)] == local:
            new = remote[len(local) :]
            if new:
                old_tree = self._tree(clone)
                clone.commits = list(remote)
                self._checkout(path, old_tree, self._tree(clone))
            return PullResult(new_commits=len(new))
        if local[: len(remote)] == remote:
            return PullResult(new_commits=0)  # only unpushed local commits
        raise GitCommandError("pull", "Not possible to fast-forward, aborting.", 128)

    def head(self, path: Path) -> str | None:
        clone = self._clone(path)
        return clone.commits[-1].sha if clone.commits else None

    def log(self, path: Path, since: str | None = None) -> list[CommitRecord]:
        commits = self._clone(path).commits
        if since is not None:
            shas = [c.sha for c in commits]
            commits = commits[shas.index(since) + 1 :] if since in shas else commits
        return [c.record() for c in reversed(commits)]

    def commit(
        self, path: Path, message: str, *, author: Author, file: str | None = None
    ) -> str:
        self._check("commit", path)
        clone = self._clone(path)
        tree = self._tree(clone)
        files: tuple[str, ...] = ()
        if file is not None:
            target = path / file
            if target.exists():
                tree[file] = target.read_text()
            else:
                tree.pop(file, None)
            files = (file,)
        commit = self._new_commit(message, author.name, files, tree)
        clone.commits.append(commit)
        return commit.sha

    def push(self, path: Path) -> None:
        self._check("push", path)
        clone = self._clone(path)
        remote = self.remotes.setdefault(clone.url, [])
        if clone.commits[: len(remote)] != remote:
            raise PushRejectedError("non-fast-forward")
        self.remotes[clone.url] = list(clone.commits)

    def reset_to_parent(self, path: Path) -> None:
        self._check("reset_to_parent", path)
        clone = self._clone(path)
        if len(clone.commits) < 2:
            raise NoParentCommitError(str(path))
        old_tree = self._tree(clone)
        clone.commits.pop()
        self._checkout(path, old_tree, self._tree(clone))

    def forget(self, path: Path) -> None:
        """Drop a clone, as if its directory was deleted."""
        self.clones.pop(path, None)
        shutil.rmtree(path, ignore_errors=True)


class FakeIdentityProvider:
    def __init__(self, name: str = "alice", email: str = "alice@example.com") -> None:
        self.name = name
        self.email = email

    def user_name(self) -> str:
        return self.name

    def user_email(self) -> str:
        return self.email


def drain(channel) -> list:
    """Pop every queued event without dispatching it."""
    events = []
    while channel.pending():
        events.append(channel._queue.get_nowait())
        channel._queue.task_done()
    return events


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _clean_git_env():
    """Strip git env vars that pre-commit leaks during its stash cycle.

    Tests that create temporary git repos inherit these variables, causing
    git commands to operate on the wrong repository.
    """
    import os

    for var in ("GIT_INDEX_FILE", "GIT_DIR", "GIT_WORK_TREE"):
        os.environ.pop(var, None)


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Ensure each test starts with a clean Settings singleton.

    Uses ``make_settings()`` to build from pure defaults — no commitchat.toml,
    no .env, no file I/O.
    """
    safe = make_settings()
    monkeypatch.setattr("commitchat.config._settings", safe)


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def repo() -> FakeRepositoryService:
    return FakeRepositoryService()


@pytest.fixture
def identity() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def chats_dir(tmp_path: Path) -> Path:
    path = tmp_path / "chats"
    path.mkdir()
    return path


@pytest.fixture
def registry():
    from commitchat.registry import ChatRegistry

    return ChatRegistry()


@pytest.fixture
def channel():
    from commitchat.notifications import NotificationChannel

    return NotificationChannel(max_queued=1000)


@pytest.fixture
def bootstrapper(registry, repo, identity, channel, chats_dir, tmp_path):
    from commitchat.bootstrap import ChatBootstrapper

    return ChatBootstrapper(
        registry,
        repo,
        identity,
        channel,
        chats_dir=chats_dir,
        known_hosts=tmp_path / "ssh" / "known_hosts",
    )


@pytest.fixture
def engine(registry, repo, identity, channel, chats_dir):
    from commitchat.engine import SyncEngine

    return SyncEngine(registry, repo, identity, channel, chats_dir=chats_dir)


@pytest.fixture
def poller(registry, repo, channel):
    from commitchat.poller import Poller

    return Poller(registry, repo, channel, interval=0.01)


def info_json(url: str, name: str, username: str = "bob") -> str:
    """Serialized info file with *username* as the only member."""
    from commitchat import chat_info
    from commitchat.identity import Identity

    member = Identity(username=username, visible_name=username, email=f"{username}@example.com")
    return chat_info.new_chat_info(url, name, member).model_dump_json(by_alias=True)


def make_bare_origin(parent: Path, name: str = "origin.git") -> Path:
    """Create an empty bare repository to act as a chat remote."""
    import subprocess

    origin = parent / name
    origin.mkdir(parents=True)
    subprocess.run(
        ["git", "init", "--bare", "--initial-branch=main"],
        cwd=str(origin),
        capture_output=True,
        text=True,
        check=True,
    )
    return origin


@pytest.fixture
def git_home(tmp_path: Path, monkeypatch) -> Path:
    """Isolated global git config so the operator's settings never leak in."""
    config = tmp_path / "gitconfig"
    config.write_text(
        "[user]\n\tname = Test\n\temail = test@test.com\n[init]\n\tdefaultBranch = main\n"
    )
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    return tmp_path
