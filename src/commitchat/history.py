"""Derive chat state from commit history.

Message commits are the ones that leave ``info.json`` untouched; commits that
create or update the roster are bookkeeping and never count as messages.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass

from commitchat import chat_info
from commitchat.chat_info import INFO_FILE
from commitchat.errors import ChatInfoError
from commitchat.logger import logger
from commitchat.repository import CommitRecord, RepositoryService
from commitchat.types import Chat, Message


@dataclass(frozen=True)
class HistorySummary:
    msg_num: int
    last_msg: Message | None
    head: str | None
    roster_changed: bool = False


def is_message(record: CommitRecord) -> bool:
    return not record.touches(INFO_FILE)


def to_message(record: CommitRecord) -> Message:
    return Message(text=record.message, author=record.author_name, time=record.author_time)


def messages_oldest_first(records: Sequence[CommitRecord]) -> list[Message]:
    """*records* come newest first, as ``log`` returns them."""
    return [to_message(r) for r in reversed(records) if is_message(r)]


def last_message(records: Sequence[CommitRecord]) -> Message | None:
    for record in records:
        if is_message(record):
            return to_message(record)
    return None


def summarize(records: Sequence[CommitRecord]) -> HistorySummary:
    """Summarize a newest-first slice of history.

    ``msg_num`` counts the messages in the slice; for a full log that is the
    chat's total, for a ``since`` slice it is the number of new messages.
    """
    return HistorySummary(
        msg_num=sum(1 for r in records if is_message(r)),
        last_msg=last_message(records),
        head=records[0].sha if records else None,
        roster_changed=any(not is_message(r) for r in records),
    )


async def catch_up(
    repository: RepositoryService, chat: Chat, *, count_unread: bool = True
) -> list[Message] | None:
    """Account for commits that arrived since ``chat.head``.

    Call with the chat's guard held. Returns the new messages oldest first,
    or None when HEAD has not moved. Pass ``count_unread=False`` for the
    selected chat: its messages are on screen, so they never add to unread.
    """
    head = await asyncio.to_thread(repository.head, chat.path)
    if head is None or head == chat.head:
        return None

    records = await asyncio.to_thread(repository.log, chat.path, chat.head)
    summary = summarize(records)
    chat.msg_num += summary.msg_num
    if count_unread:
        chat.unread += summary.msg_num
    if summary.last_msg is not None:
        chat.last_msg = summary.last_msg
    if summary.roster_changed:
        try:
            info = await asyncio.to_thread(chat_info.load, chat.path)
        except ChatInfoError as exc:
            logger.warning("Roster changed but info file is unreadable", chat=chat.name, err=str(exc))
        else:
            chat.members = list(info.members)
    chat.head = head
    return messages_oldest_first(records)
