"""Data models for commitchat."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TypeAlias

from commitchat.chat_info import Member

ChatId: TypeAlias = int


@dataclass(frozen=True)
class Message:
    """Read-only projection of one message commit."""

    text: str
    author: str
    time: datetime


@dataclass(frozen=True)
class ChatSnapshot:
    """Immutable copy of a Chat, safe to hand outside the chat's guard."""

    id: ChatId
    url: str
    name: str
    path: Path
    members: tuple[Member, ...]
    msg_num: int
    last_msg: Message | None
    unread: int

    @property
    def members_num(self) -> int:
        return len(self.members)


@dataclass
class Chat:
    """Registry-owned chat record.

    Mutate only while holding the chat's guard. ``head`` is the last commit
    the engine has accounted for; the poller counts new messages from there.
    """

    id: ChatId
    url: str
    name: str
    path: Path
    members: list[Member] = field(default_factory=list)
    msg_num: int = 0
    last_msg: Message | None = None
    unread: int = 0
    head: str | None = None

    def snapshot(self) -> ChatSnapshot:
        return ChatSnapshot(
            id=self.id,
            url=self.url,
            name=self.name,
            path=self.path,
            members=tuple(self.members),
            msg_num=self.msg_num,
            last_msg=self.last_msg,
            unread=self.unread,
        )
