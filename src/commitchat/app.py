"""Composition root — wires registry, repository, poller and engine together.

A display layer creates one ``ChatApp``, attaches its sink and drives the
user operations through it::

    async with ChatApp() as app:
        app.attach(sink)
        await app.add_chat("git@example.com:team/general.git")
        await app.select_chat("team/general")
        await app.send_message("hello")
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from typing import Self

from commitchat.bootstrap import ChatBootstrapper
from commitchat.config import Settings, get_settings
from commitchat.engine import SyncEngine
from commitchat.identity import GitIdentityProvider, IdentityProvider
from commitchat.logger import logger, set_log_level
from commitchat.notifications import DisplaySink, NotificationChannel
from commitchat.poller import Poller
from commitchat.registry import ChatRegistry
from commitchat.repository import GitRepositoryService, RepositoryService
from commitchat.types import ChatSnapshot, Message


class ChatApp:
    """Owns all runtime state for one operator session."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        repository: RepositoryService | None = None,
        identity_provider: IdentityProvider | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        s = self.settings
        set_log_level(s.logging.level)

        self.registry = ChatRegistry()
        self.channel = NotificationChannel(max_queued=s.notifications.max_queued)
        self.repository: RepositoryService = repository or GitRepositoryService(
            default_branch=s.git.default_branch, timeout=s.git.command_timeout
        )
        self.identity_provider: IdentityProvider = identity_provider or GitIdentityProvider()

        self.bootstrapper = ChatBootstrapper(
            self.registry,
            self.repository,
            self.identity_provider,
            self.channel,
            chats_dir=s.chats_dir,
            known_hosts=s.known_hosts_path,
        )
        self.engine = SyncEngine(
            self.registry,
            self.repository,
            self.identity_provider,
            self.channel,
            chats_dir=s.chats_dir,
        )
        self.poller = Poller(
            self.registry, self.repository, self.channel, interval=s.intervals.chat_poll
        )

        self._stop = asyncio.Event()
        self._poller_task: asyncio.Task[None] | None = None
        self._dispatch_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> list[ChatSnapshot]:
        """Load chats from disk, then start dispatching and polling."""
        if self._poller_task is not None:
            raise RuntimeError("ChatApp already started")

        self.settings.chats_dir.mkdir(parents=True, exist_ok=True)
        chats = await self.engine.collect_chats()

        self._stop.clear()
        self._dispatch_task = asyncio.create_task(self.channel.run(), name="commitchat-dispatch")
        self._poller_task = asyncio.create_task(self.poller.run(self._stop), name="commitchat-poller")
        logger.info("Chat app started", chats=len(chats), root=str(self.settings.chats_dir))
        return chats

    async def stop(self) -> None:
        """Stop polling, then flush whatever events are still queued."""
        self._stop.set()
        if self._poller_task is not None:
            await self._poller_task
            self._poller_task = None

        if self._dispatch_task is not None:
            self._dispatch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._dispatch_task
            self._dispatch_task = None

        flushed = await self.channel.dispatch_pending()
        logger.info("Chat app stopped", flushed=flushed, dropped=self.channel.dropped)

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def attach(self, sink: DisplaySink) -> Callable[[], None]:
        return self.channel.attach(sink)

    def chats(self) -> list[ChatSnapshot]:
        return self.registry.snapshot()

    async def add_chat(self, url: str) -> ChatSnapshot:
        return await self.bootstrapper.add_chat(url)

    async def trust_host(self, url: str) -> list[str]:
        return await self.bootstrapper.trust_host(url)

    async def select_chat(self, name: str) -> ChatSnapshot:
        return await self.engine.select_chat(name)

    async def send_message(self, text: str) -> Message:
        return await self.engine.send_message(text)

    async def mark_read(self) -> ChatSnapshot:
        return await self.engine.mark_read()
