"""Bootstrap Protocol — turn a repository URL into a ready, joined chat.

States::

    RESOLVING -> FETCHING -> INFO_CHECK -> INFO_LOAD | INFO_CREATE -> READY
                                                                   \\-> FAILED

A chat's info file must never stay committed locally without also being on
the remote: every other participant's INFO_CHECK depends on it. When pushing
a freshly created info file fails, the commit is reset away; when the reset
is impossible (it was the very first commit) the local clone is deleted.
"""

from __future__ import annotations

import asyncio
import shutil
from enum import StrEnum
from pathlib import Path

from commitchat import chat_info
from commitchat.chat_info import INFO_FILE, ChatInfo
from commitchat.errors import (
    AlreadyExistsError,
    ChatAlreadyAddedError,
    ChatInfoNotFoundError,
    CommitChatInfoError,
    EmptyRemoteError,
    PushChatInfoError,
    RepositoryError,
    ResetLastCommitError,
)
from commitchat.history import summarize
from commitchat.identity import Identity, IdentityProvider, current_identity
from commitchat.known_hosts import add_known_host, host_of
from commitchat.logger import logger
from commitchat.notifications import ChatAddedEvent, NotificationChannel
from commitchat.registry import ChatRegistry
from commitchat.repository import RepositoryService
from commitchat.types import ChatSnapshot

CREATE_INFO_MESSAGE = "Create info.json"
UPDATE_INFO_MESSAGE = "Update info.json"


class BootstrapState(StrEnum):
    RESOLVING = "resolving"
    FETCHING = "fetching"
    INFO_CHECK = "info_check"
    INFO_LOAD = "info_load"
    INFO_CREATE = "info_create"
    READY = "ready"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Steps shared with the startup scan
# ---------------------------------------------------------------------------


async def join_chat(
    repository: RepositoryService, path: Path, info: ChatInfo, identity: Identity
) -> ChatInfo:
    """Make sure the local operator is on the roster, publishing the change.

    A push failure is tolerated: the operator can still read the chat and the
    roster update goes out with the next successful push.
    """
    updated, changed = chat_info.reconcile_membership(info, identity)
    if not changed:
        return info

    await asyncio.to_thread(chat_info.save, path, updated)
    try:
        await asyncio.to_thread(
            repository.commit, path, UPDATE_INFO_MESSAGE, author=identity.author, file=INFO_FILE
        )
    except RepositoryError as exc:
        logger.warning(
            "Committing roster update failed, staying a reader", path=str(path), err=str(exc)
        )
        await asyncio.to_thread(chat_info.save, path, info)
        return info

    try:
        await asyncio.to_thread(repository.push, path)
    except RepositoryError as exc:
        logger.warning("Pushing roster update failed", path=str(path), err=str(exc))
    else:
        logger.info("Joined chat", chat=info.name, member=identity.username)
    return updated


async def register_chat(
    registry: ChatRegistry,
    repository: RepositoryService,
    channel: NotificationChannel,
    *,
    url: str,
    name: str,
    path: Path,
    info: ChatInfo,
) -> ChatSnapshot:
    """Pull, derive counts from history and add the chat to the registry."""
    try:
        await asyncio.to_thread(repository.pull, path)
    except RepositoryError as exc:
        logger.warning("Initial pull failed, using local history", chat=name, err=str(exc))

    records = await asyncio.to_thread(repository.log, path)
    summary = summarize(records)
    chat_id = registry.add(
        url=url,
        name=name,
        path=path,
        members=list(info.members),
        msg_num=summary.msg_num,
        last_msg=summary.last_msg,
        head=summary.head,
    )
    snapshot = registry.snapshot_of(chat_id)
    channel.publish(ChatAddedEvent(chat=snapshot))
    logger.info("Chat ready", chat=name, messages=summary.msg_num, members=snapshot.members_num)
    return snapshot


# ---------------------------------------------------------------------------
# AddChat
# ---------------------------------------------------------------------------


class ChatBootstrapper:
    """Runs AddChat and the host-trust sub-flow."""

    def __init__(
        self,
        registry: ChatRegistry,
        repository: RepositoryService,
        identity_provider: IdentityProvider,
        channel: NotificationChannel,
        *,
        chats_dir: Path,
        known_hosts: Path,
    ) -> None:
        self._registry = registry
        self._repository = repository
        self._identity_provider = identity_provider
        self._channel = channel
        self._chats_dir = chats_dir
        self._known_hosts = known_hosts
        self._states: dict[str, BootstrapState] = {}  # chats being added

    def chat_path(self, name: str) -> Path:
        return self._chats_dir / name

    async def add_chat(self, url: str) -> ChatSnapshot:
        """Clone (or init) the chat at *url*, join it and register it.

        Raises:
            InvalidChatURLError: the URL has no ``<group>/<name>.git`` path.
            ChatAlreadyAddedError: the chat is registered or being added.
            UnknownHostKeyError: confirm with the operator, ``trust_host`` and retry.
            CommitChatInfoError / PushChatInfoError: creating the info file failed.
        """
        url = url.strip()
        name = chat_info.parse_chat_name(url)
        if name in self._registry or name in self._states:
            raise ChatAlreadyAddedError(name)

        self._transition(BootstrapState.RESOLVING, name)
        try:
            return await self._run(url, name)
        except Exception as exc:
            logger.warning(
                "Add chat failed",
                chat=name,
                state=str(BootstrapState.FAILED),
                failed_in=str(self._states.get(name)),
                err=str(exc),
            )
            raise
        finally:
            self._states.pop(name, None)

    async def _run(self, url: str, name: str) -> ChatSnapshot:
        path = self.chat_path(name)
        identity = await asyncio.to_thread(current_identity, self._identity_provider)

        self._transition(BootstrapState.FETCHING, name)
        await self._fetch(url, name, path)

        self._transition(BootstrapState.INFO_CHECK, name)
        try:
            info = await asyncio.to_thread(chat_info.load, path)
        except ChatInfoNotFoundError:
            self._transition(BootstrapState.INFO_CREATE, name)
            info = await self._create_info(url, name, path, identity)
        else:
            self._transition(BootstrapState.INFO_LOAD, name)
            info = await join_chat(self._repository, path, info, identity)

        self._transition(BootstrapState.READY, name)
        return await register_chat(
            self._registry,
            self._repository,
            self._channel,
            url=url,
            name=name,
            path=path,
            info=info,
        )

    def _transition(self, state: BootstrapState, name: str) -> None:
        self._states[name] = state
        logger.debug("Bootstrap state", chat=name, state=str(state))

    async def _fetch(self, url: str, name: str, path: Path) -> None:
        try:
            await asyncio.to_thread(self._repository.clone, url, path)
        except EmptyRemoteError:
            logger.info("Remote is empty, initializing chat locally", chat=name)
            await asyncio.to_thread(self._repository.init, path, url)
        except AlreadyExistsError:
            if name in self._registry:
                raise ChatAlreadyAddedError(name) from None
            logger.info("Chat already cloned, reopening", chat=name, path=str(path))
            await asyncio.to_thread(self._repository.open, path)

    async def _create_info(self, url: str, name: str, path: Path, identity: Identity) -> ChatInfo:
        info = chat_info.new_chat_info(url, name, identity)
        await asyncio.to_thread(chat_info.save, path, info)

        try:
            await asyncio.to_thread(
                self._repository.commit,
                path,
                CREATE_INFO_MESSAGE,
                author=identity.author,
                file=INFO_FILE,
            )
        except RepositoryError as exc:
            chat_info.remove(path)
            raise CommitChatInfoError(f"committing {INFO_FILE} for {name}: {exc}") from exc

        try:
            await asyncio.to_thread(self._repository.push, path)
        except RepositoryError as exc:
            await self._rollback_info_commit(name, path, exc)

        logger.info("Created chat info", chat=name)
        return info

    async def _rollback_info_commit(self, name: str, path: Path, push_exc: RepositoryError) -> None:
        """Undo an info commit the remote never received. Always raises PushChatInfoError."""
        try:
            await asyncio.to_thread(self._repository.reset_to_parent, path)
        except RepositoryError as reset_exc:
            logger.warning(
                "Cannot reset info commit, removing local chat",
                chat=name,
                path=str(path),
                err=str(reset_exc),
            )
            await asyncio.to_thread(shutil.rmtree, path, ignore_errors=True)
            if path.exists():
                logger.error("Local chat directory could not be removed", path=str(path))
            reset_err = ResetLastCommitError(f"resetting {INFO_FILE} commit for {name}: {reset_exc}")
            reset_err.__cause__ = reset_exc
            raise PushChatInfoError(
                f"pushing {INFO_FILE} for {name}: {push_exc}; local chat removed"
            ) from reset_err

        chat_info.remove(path)
        logger.warning("Pushing info failed, reset the commit", chat=name, err=str(push_exc))
        raise PushChatInfoError(f"pushing {INFO_FILE} for {name}: {push_exc}") from push_exc

    # --- Host trust ---

    def host_of(self, url: str) -> str:
        return host_of(url)

    async def trust_host(self, url: str) -> list[str]:
        """Append the URL host's keys to known_hosts (after the operator confirmed)."""
        return await asyncio.to_thread(add_known_host, url, self._known_hosts)
