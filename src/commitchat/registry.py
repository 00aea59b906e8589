"""Chat Registry — the set of known chats and the current selection.

Chats live in an arena keyed by a stable integer id. Each chat's guard is an
``asyncio.Lock`` kept in a side table under the same id, never on the record.

Two kinds of locking:

* ``self._lock`` (``threading.Lock``) protects the arena, the name index and
  the current pointer. It is held only for in-memory bookkeeping, never
  across an ``await`` or a repository call.
* ``guard(chat_id)`` serializes every read-modify-write of one chat's record
  and every repository call against its working copy.

Callers look a chat up first, then take its guard; nothing takes the
registry lock while holding a chat guard and then blocks on it.
"""

from __future__ import annotations

import asyncio
import itertools
import threading
from pathlib import Path

from commitchat.chat_info import Member
from commitchat.errors import ChatAlreadyAddedError, ChatNotFoundError, CurrentChatUnsetError
from commitchat.types import Chat, ChatId, ChatSnapshot, Message


class ChatRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._chats: dict[ChatId, Chat] = {}  # insertion order = registration order
        self._by_name: dict[str, ChatId] = {}
        self._guards: dict[ChatId, asyncio.Lock] = {}
        self._current: ChatId | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._chats)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._by_name

    def add(
        self,
        *,
        url: str,
        name: str,
        path: Path,
        members: list[Member] | None = None,
        msg_num: int = 0,
        last_msg: Message | None = None,
        head: str | None = None,
    ) -> ChatId:
        """Register a chat. Names are unique; a duplicate raises ChatAlreadyAddedError."""
        with self._lock:
            if name in self._by_name:
                raise ChatAlreadyAddedError(name)
            chat_id = next(self._ids)
            self._chats[chat_id] = Chat(
                id=chat_id,
                url=url,
                name=name,
                path=path,
                members=list(members or []),
                msg_num=msg_num,
                last_msg=last_msg,
                head=head,
            )
            self._by_name[name] = chat_id
            self._guards[chat_id] = asyncio.Lock()
            return chat_id

    def find(self, name: str) -> ChatId | None:
        with self._lock:
            return self._by_name.get(name)

    def require(self, name: str) -> ChatId:
        chat_id = self.find(name)
        if chat_id is None:
            raise ChatNotFoundError(name)
        return chat_id

    def get(self, chat_id: ChatId) -> Chat:
        """The live record. Only touch it while holding ``guard(chat_id)``."""
        with self._lock:
            return self._chats[chat_id]

    def guard(self, chat_id: ChatId) -> asyncio.Lock:
        with self._lock:
            return self._guards[chat_id]

    def ids(self) -> list[ChatId]:
        """Copy of the registered ids, in registration order."""
        with self._lock:
            return list(self._chats)

    def snapshot(self) -> list[ChatSnapshot]:
        """Copies of every chat, in registration order."""
        with self._lock:
            return [chat.snapshot() for chat in self._chats.values()]

    def snapshot_of(self, chat_id: ChatId) -> ChatSnapshot:
        with self._lock:
            return self._chats[chat_id].snapshot()

    # --- Current chat ---

    def set_current(self, chat_id: ChatId) -> None:
        """Select *chat_id* for display and clear its unread counter."""
        with self._lock:
            chat = self._chats[chat_id]
            self._current = chat_id
            chat.unread = 0

    def get_current(self) -> ChatId:
        with self._lock:
            if self._current is None:
                raise CurrentChatUnsetError()
            return self._current

    @property
    def current_id(self) -> ChatId | None:
        with self._lock:
            return self._current

    def is_current(self, chat_id: ChatId) -> bool:
        with self._lock:
            return self._current == chat_id
