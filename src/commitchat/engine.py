"""Sync Engine — user-triggered operations against one chat at a time.

Every operation looks the chat up in the registry once and then works under
that chat's guard only, so a send can never interleave with a poll of the
same working copy.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path

from commitchat import chat_info
from commitchat.bootstrap import join_chat, register_chat
from commitchat.errors import (
    ChatError,
    ChatInfoError,
    ChatInfoNotFoundError,
    RepositoryError,
    SendMessageError,
)
from commitchat.history import catch_up, messages_oldest_first, summarize
from commitchat.identity import IdentityProvider, current_identity
from commitchat.logger import logger
from commitchat.notifications import (
    ChatUpdatedEvent,
    HistoryEvent,
    MessageEvent,
    NotificationChannel,
)
from commitchat.registry import ChatRegistry
from commitchat.repository import RepositoryService
from commitchat.types import ChatSnapshot, Message


class SyncEngine:
    def __init__(
        self,
        registry: ChatRegistry,
        repository: RepositoryService,
        identity_provider: IdentityProvider,
        channel: NotificationChannel,
        *,
        chats_dir: Path,
    ) -> None:
        self._registry = registry
        self._repository = repository
        self._identity_provider = identity_provider
        self._channel = channel
        self._chats_dir = chats_dir

    # ------------------------------------------------------------------
    # SelectChat
    # ------------------------------------------------------------------

    async def select_chat(self, name: str) -> ChatSnapshot:
        """Make *name* the current chat and publish its whole history.

        A failed pull is logged and the local history is shown instead.
        """
        chat_id = self._registry.require(name)
        async with self._registry.guard(chat_id):
            chat = self._registry.get(chat_id)
            try:
                await asyncio.to_thread(self._repository.pull, chat.path)
            except RepositoryError as exc:
                logger.warning("Pull failed, showing local history", chat=name, err=str(exc))

            records = await asyncio.to_thread(self._repository.log, chat.path)
            summary = summarize(records)
            chat.msg_num = summary.msg_num
            chat.last_msg = summary.last_msg
            chat.head = summary.head
            self._registry.set_current(chat_id)

            snapshot = chat.snapshot()
            history = tuple(messages_oldest_first(records))
            self._channel.publish(ChatUpdatedEvent(chat=snapshot))
            self._channel.publish(HistoryEvent(chat=snapshot, messages=history))

        logger.info("Selected chat", chat=name, messages=snapshot.msg_num)
        return snapshot

    async def mark_read(self) -> ChatSnapshot:
        """Clear the unread counter of the current chat."""
        chat_id = self._registry.get_current()
        async with self._registry.guard(chat_id):
            chat = self._registry.get(chat_id)
            chat.unread = 0
            snapshot = chat.snapshot()
            self._channel.publish(ChatUpdatedEvent(chat=snapshot))
        return snapshot

    # ------------------------------------------------------------------
    # SendMsg
    # ------------------------------------------------------------------

    async def send_message(self, text: str) -> Message:
        """Commit *text* as an empty commit on the current chat and push it.

        Raises:
            CurrentChatUnsetError: no chat is selected.
            SendMessageError: the push failed; the local commit was undone.
            RepositoryError: pulling or committing failed.
        """
        if not text.strip():
            raise ValueError("message text is empty")
        if "\x00" in text:
            raise ValueError("message text contains a NUL character")

        chat_id = self._registry.get_current()
        identity = await asyncio.to_thread(current_identity, self._identity_provider)

        async with self._registry.guard(chat_id):
            chat = self._registry.get(chat_id)

            # Bring local history current so the new commit lands on top
            await asyncio.to_thread(self._repository.pull, chat.path)
            pulled = await catch_up(self._repository, chat) or []
            for message in pulled:
                self._channel.publish(MessageEvent(chat_name=chat.name, message=message))

            await asyncio.to_thread(
                self._repository.commit, chat.path, text, author=identity.author
            )
            try:
                await asyncio.to_thread(self._repository.push, chat.path)
            except RepositoryError as exc:
                await self._undo_unpushed(chat.name, chat.path)
                raise SendMessageError(f"pushing message to {chat.name}: {exc}") from exc

            sent = await catch_up(self._repository, chat, count_unread=False) or []
            chat.unread = 0
            snapshot = chat.snapshot()
            for message in sent:
                self._channel.publish(MessageEvent(chat_name=chat.name, message=message))
            self._channel.publish(ChatUpdatedEvent(chat=snapshot))

        logger.info("Sent message", chat=snapshot.name, messages=snapshot.msg_num)
        if sent:
            return sent[-1]
        return Message(text=text, author=identity.username, time=datetime.now(UTC))

    async def _undo_unpushed(self, name: str, path: Path) -> None:
        try:
            await asyncio.to_thread(self._repository.reset_to_parent, path)
        except RepositoryError as exc:
            logger.error("Could not undo unpushed message commit", chat=name, err=str(exc))

    # ------------------------------------------------------------------
    # CollectChats
    # ------------------------------------------------------------------

    def _scan(self) -> list[Path]:
        """Chat working copies under ``<chats_dir>/<group>/<name>``, sorted."""
        if not self._chats_dir.is_dir():
            return []
        found: list[Path] = []
        for group in sorted(p for p in self._chats_dir.iterdir() if p.is_dir()):
            for path in sorted(p for p in group.iterdir() if p.is_dir()):
                if self._repository.is_repository(path):
                    found.append(path)
        return found

    async def collect_chats(self) -> list[ChatSnapshot]:
        """Register every chat already cloned under the storage root.

        Directories without a readable info file are logged and skipped.
        """
        identity = await asyncio.to_thread(current_identity, self._identity_provider)
        paths = await asyncio.to_thread(self._scan)

        collected: list[ChatSnapshot] = []
        for path in paths:
            name = path.relative_to(self._chats_dir).as_posix()
            if name in self._registry:
                continue

            try:
                info = await asyncio.to_thread(chat_info.load, path)
            except ChatInfoNotFoundError:
                logger.warning("Chat directory has no info file, skipping", path=str(path))
                continue
            except ChatInfoError as exc:
                logger.warning("Chat info unreadable, skipping", path=str(path), err=str(exc))
                continue

            try:
                info = await join_chat(self._repository, path, info, identity)
                snapshot = await register_chat(
                    self._registry,
                    self._repository,
                    self._channel,
                    url=info.url,
                    name=name,
                    path=path,
                    info=info,
                )
            except ChatError as exc:
                logger.warning("Failed to load chat, skipping", chat=name, err=str(exc))
                continue
            collected.append(snapshot)

        logger.info("Collected chats", count=len(collected), root=str(self._chats_dir))
        return collected
