"""Display helpers — timestamps, author colors and chat list lines.

Pure functions; the display sink decides where the strings go.
"""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime, timedelta

from commitchat.types import ChatSnapshot, Message

_PREVIEW_WIDTH = 40


def _aware(t: datetime) -> datetime:
    return t if t.tzinfo is not None else t.replace(tzinfo=UTC)


def relative_time(t: datetime, now: datetime | None = None) -> str:
    """Short timestamp for chat lists and message lines.

    Within a day: ``14:05``. Within a week: the weekday. Older: ``02.01.2006``.
    """
    t = _aware(t)
    now = _aware(now or datetime.now(UTC))
    age = now - t
    if age < timedelta(days=1):
        return t.strftime("%H:%M")
    if age < timedelta(days=7):
        return t.strftime("%A")
    return t.strftime("%d.%m.%Y")


def day_header(t: datetime, now: datetime | None = None) -> str:
    """Date separator shown above the first message of each day."""
    t = _aware(t)
    now = _aware(now or datetime.now(UTC))
    if t.year == now.year:
        return f"{t:%B} {t.day}"
    return f"{t:%B} {t.day}, {t.year}"


def author_color(username: str) -> str:
    """Stable ``#rrggbb`` color for *username*."""
    digest = hashlib.sha256(username.encode()).hexdigest()
    return f"#{digest[:6]}"


def preview(text: str, width: int = _PREVIEW_WIDTH) -> str:
    first_line = text.strip().splitlines()[0] if text.strip() else ""
    if len(first_line) <= width:
        return first_line
    return first_line[: width - 1] + "…"


def chat_line(chat: ChatSnapshot, now: datetime | None = None) -> str:
    """One chat list entry: name, unread badge, last message preview and time."""
    badge = f" ({chat.unread})" if chat.unread else ""
    if chat.last_msg is None:
        return f"{chat.name}{badge}"
    when = relative_time(chat.last_msg.time, now)
    return f"{chat.name}{badge}  {chat.last_msg.author}: {preview(chat.last_msg.text)}  {when}"


def message_line(message: Message, now: datetime | None = None) -> str:
    return f"[{relative_time(message.time, now)}] {message.author}: {message.text}"


class DayTracker:
    """Emits a day header whenever consecutive messages cross a date boundary."""

    def __init__(self) -> None:
        self._last_day: tuple[int, int, int] | None = None

    def header_for(self, message: Message, now: datetime | None = None) -> str | None:
        t = _aware(message.time)
        day = (t.year, t.month, t.day)
        if day == self._last_day:
            return None
        self._last_day = day
        return day_header(t, now)

    def reset(self) -> None:
        self._last_day = None
