"""Tests for display formatting helpers."""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from pathlib import Path

from commitchat.formatting import (
    DayTracker,
    author_color,
    chat_line,
    day_header,
    message_line,
    preview,
    relative_time,
)
from commitchat.types import ChatSnapshot, Message

NOW = datetime(2026, 3, 12, 15, 0, tzinfo=UTC)  # a Thursday


def _msg(text: str, t: datetime, author: str = "bob") -> Message:
    return Message(text=text, author=author, time=t)


class TestRelativeTime:
    def test_same_day_shows_clock(self):
        assert relative_time(NOW - timedelta(hours=2), NOW) == "13:00"

    def test_within_week_shows_weekday(self):
        assert relative_time(NOW - timedelta(days=2), NOW) == "Tuesday"

    def test_older_shows_date(self):
        assert relative_time(NOW - timedelta(days=30), NOW) == "10.02.2026"

    def test_naive_times_are_utc(self):
        assert relative_time(datetime(2026, 3, 12, 14, 5), NOW) == "14:05"


class TestDayHeader:
    def test_this_year(self):
        assert day_header(datetime(2026, 1, 2, tzinfo=UTC), NOW) == "January 2"

    def test_other_year(self):
        assert day_header(datetime(2006, 1, 2, tzinfo=UTC), NOW) == "January 2, 2006"

    def test_tracker_emits_once_per_day(self):
        tracker = DayTracker()
        day1 = datetime(2026, 3, 10, 9, 0, tzinfo=UTC)

        headers = [
            tracker.header_for(_msg("a", day1), NOW),
            tracker.header_for(_msg("b", day1 + timedelta(hours=3)), NOW),
            tracker.header_for(_msg("c", day1 + timedelta(days=1)), NOW),
        ]

        assert headers == ["March 10", None, "March 11"]
        tracker.reset()
        assert tracker.header_for(_msg("d", day1), NOW) == "March 10"


class TestAuthorColor:
    def test_stable_hex(self):
        assert author_color("alice") == author_color("alice")
        assert re.fullmatch(r"#[0-9a-f]{6}", author_color("alice"))

    def test_differs_between_authors(self):
        assert author_color("alice") != author_color("bob")


class TestLines:
    def _chat(self, **kwargs) -> ChatSnapshot:
        fields = {
            "id": 1,
            "url": "git@example.com:team/general.git",
            "name": "team/general",
            "path": Path("/chats/team/general"),
            "members": (),
            "msg_num": 0,
            "last_msg": None,
            "unread": 0,
        }
        fields.update(kwargs)
        return ChatSnapshot(**fields)

    def test_empty_chat(self):
        assert chat_line(self._chat(), NOW) == "team/general"

    def test_unread_badge_and_preview(self):
        chat = self._chat(unread=2, last_msg=_msg("see you\nlater", NOW - timedelta(minutes=5)))

        assert chat_line(chat, NOW) == "team/general (2)  bob: see you  14:55"

    def test_preview_truncates(self):
        assert preview("x" * 50, width=10) == "x" * 9 + "…"
        assert preview("   ") == ""

    def test_message_line(self):
        assert message_line(_msg("hello", NOW), NOW) == "[15:00] bob: hello"
