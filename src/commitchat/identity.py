"""Identity Provider — who the local operator is, from git configuration."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Protocol

from commitchat.errors import IdentityNotConfiguredError
from commitchat.repository import Author, run_git


@dataclass(frozen=True)
class Identity:
    """The local operator as recorded in a chat roster."""

    username: str
    visible_name: str
    email: str

    @property
    def author(self) -> Author:
        return Author(name=self.username, email=self.email)


class IdentityProvider(Protocol):
    def user_name(self) -> str: ...

    def user_email(self) -> str: ...


class GitIdentityProvider:
    """Reads ``user.name`` / ``user.email`` via ``git config``."""

    def _get(self, key: str) -> str:
        try:
            result = run_git("config", "--get", key)
        except (OSError, subprocess.SubprocessError) as exc:
            raise IdentityNotConfiguredError(key) from exc
        value = result.stdout.strip() if result.returncode == 0 else ""
        if not value:
            raise IdentityNotConfiguredError(key)
        return value

    def user_name(self) -> str:
        return self._get("user.name")

    def user_email(self) -> str:
        return self._get("user.email")


def current_identity(provider: IdentityProvider) -> Identity:
    name = provider.user_name()
    return Identity(username=name, visible_name=name, email=provider.user_email())
