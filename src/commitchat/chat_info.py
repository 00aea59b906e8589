"""ChatInfo Store — the roster file tracked inside every chat repository.

``info.json`` is the only chat state that crosses the repository boundary.
Message counts and the last message are always derived from commit history.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from commitchat.errors import ChatInfoError, ChatInfoNotFoundError, InvalidChatURLError
from commitchat.identity import Identity

INFO_FILE = "info.json"

_CHAT_PATH_RE = re.compile(
    r"(?:^|/)(?P<group>[A-Za-z0-9_][A-Za-z0-9_.-]*)/(?P<name>[A-Za-z0-9_][A-Za-z0-9_.-]*?)\.git/?$"
)


class Member(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    username: str
    visible_name: str = Field(alias="visibleName")
    activity: datetime


class ChatInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    url: str
    name: str
    members_num: int = Field(default=0, alias="membersNum")
    members: tuple[Member, ...] = ()

    def has_member(self, username: str) -> bool:
        return any(m.username == username for m in self.members)


def _url_path(url: str) -> str:
    if "://" in url:
        return urlsplit(url).path
    # scp-style git@host:group/name.git
    head, sep, tail = url.partition(":")
    if sep and "/" not in head:
        return tail
    return url


def parse_chat_name(url: str) -> str:
    """Derive ``<group>/<name>`` from a repository URL ending in ``.git``."""
    match = _CHAT_PATH_RE.search(_url_path(url.strip()))
    if not match:
        raise InvalidChatURLError(url)
    return f"{match.group('group')}/{match.group('name')}"


def load(chat_path: Path) -> ChatInfo:
    """Read and validate ``info.json`` from a chat working copy."""
    path = chat_path / INFO_FILE
    try:
        raw = path.read_text()
    except FileNotFoundError as exc:
        raise ChatInfoNotFoundError(f"{path} does not exist") from exc
    except OSError as exc:
        raise ChatInfoError(f"reading {path}: {exc}") from exc

    try:
        return ChatInfo.model_validate_json(raw)
    except ValidationError as exc:
        raise ChatInfoError(f"invalid {path}: {exc}") from exc


def save(chat_path: Path, info: ChatInfo) -> Path:
    """Write ``info.json`` (whole-file rewrite). Returns the path written."""
    path = chat_path / INFO_FILE
    try:
        path.write_text(info.model_dump_json(by_alias=True, indent=2) + "\n")
    except OSError as exc:
        raise ChatInfoError(f"writing {path}: {exc}") from exc
    return path


def remove(chat_path: Path) -> None:
    (chat_path / INFO_FILE).unlink(missing_ok=True)


def _member(identity: Identity, now: datetime) -> Member:
    return Member(username=identity.username, visible_name=identity.visible_name, activity=now)


def new_chat_info(url: str, name: str, identity: Identity, now: datetime | None = None) -> ChatInfo:
    member = _member(identity, now or datetime.now(UTC))
    return ChatInfo(url=url, name=name, members_num=1, members=(member,))


def reconcile_membership(
    info: ChatInfo, identity: Identity, now: datetime | None = None
) -> tuple[ChatInfo, bool]:
    """Append *identity* to the roster if absent.

    Pure: the caller persists and publishes the new info when ``changed``.
    """
    if info.has_member(identity.username):
        return info, False
    members = (*info.members, _member(identity, now or datetime.now(UTC)))
    return info.model_copy(update={"members": members, "members_num": len(members)}), True
