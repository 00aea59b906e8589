"""Background poller — pulls every known chat on a fixed interval.

Each cycle walks the registry in registration order. Per chat, under its
guard: pull, compare HEAD with the last accounted commit, count the new
messages, refresh the last message, then publish the updated snapshot (and,
for the selected chat, the new messages oldest first). Only chats that are
not selected accumulate unread messages.

A failing chat is logged and skipped for the cycle; it never stops the loop
or delays the other chats beyond its own git timeout.
"""

from __future__ import annotations

import asyncio
import contextlib

from commitchat.history import catch_up
from commitchat.logger import logger
from commitchat.notifications import ChatUpdatedEvent, MessageEvent, NotificationChannel
from commitchat.registry import ChatRegistry
from commitchat.repository import RepositoryService
from commitchat.types import ChatId

CHAT_POLL_INTERVAL = 0.5


class Poller:
    def __init__(
        self,
        registry: ChatRegistry,
        repository: RepositoryService,
        channel: NotificationChannel,
        interval: float = CHAT_POLL_INTERVAL,
    ) -> None:
        self._registry = registry
        self._repository = repository
        self._channel = channel
        self._interval = interval

    async def run(self, stop: asyncio.Event) -> None:
        """Poll until *stop* is set."""
        logger.info("Chat poller started", interval=self._interval)
        while not stop.is_set():
            await self.poll_once()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=self._interval)
        logger.info("Chat poller stopped")

    async def poll_once(self) -> int:
        """Run one cycle over every chat. Returns how many chats changed."""
        changed = 0
        for chat_id in self._registry.ids():
            try:
                if await self.poll_chat(chat_id):
                    changed += 1
            except Exception:
                logger.exception("Chat poll error", chat_id=chat_id)
        return changed

    async def poll_chat(self, chat_id: ChatId) -> bool:
        async with self._registry.guard(chat_id):
            chat = self._registry.get(chat_id)
            await asyncio.to_thread(self._repository.pull, chat.path)

            # Messages land on screen for the selected chat, so they are read
            current = self._registry.is_current(chat_id)
            messages = await catch_up(self._repository, chat, count_unread=not current)
            if messages is None:
                return False

            snapshot = chat.snapshot()
            if current:
                for message in messages:
                    self._channel.publish(MessageEvent(chat_name=chat.name, message=message))
            self._channel.publish(ChatUpdatedEvent(chat=snapshot))

        logger.debug(
            "Chat updated",
            chat=snapshot.name,
            new_messages=len(messages),
            unread=snapshot.unread,
        )
        return True
