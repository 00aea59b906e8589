"""Tests for resolving the local operator from git configuration."""

from __future__ import annotations

import subprocess
from unittest.mock import patch

import pytest

from commitchat.errors import IdentityNotConfiguredError
from commitchat.identity import GitIdentityProvider, current_identity


def _ok(stdout: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess([], 0, stdout=stdout, stderr="")


def _fail(stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess([], 1, stdout="", stderr=stderr)


class TestGitIdentityProvider:
    def test_reads_name_and_email(self):
        values = {"user.name": "Alice Liddell\n", "user.email": "alice@example.com\n"}

        def fake_run_git(*args, **kwargs):
            return _ok(values[args[-1]])

        with patch("commitchat.identity.run_git", side_effect=fake_run_git):
            identity = current_identity(GitIdentityProvider())

        assert identity.username == "Alice Liddell"
        assert identity.visible_name == "Alice Liddell"
        assert identity.email == "alice@example.com"
        assert identity.author.name == "Alice Liddell"

    def test_unset_key(self):
        with patch("commitchat.identity.run_git", return_value=_fail()):
            with pytest.raises(IdentityNotConfiguredError) as exc_info:
                GitIdentityProvider().user_email()

        assert exc_info.value.key == "user.email"

    def test_blank_value(self):
        with patch("commitchat.identity.run_git", return_value=_ok("  \n")):
            with pytest.raises(IdentityNotConfiguredError):
                GitIdentityProvider().user_name()

    def test_git_missing(self):
        with patch("commitchat.identity.run_git", side_effect=FileNotFoundError("git")):
            with pytest.raises(IdentityNotConfiguredError):
                GitIdentityProvider().user_name()
