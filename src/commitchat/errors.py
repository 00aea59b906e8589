"""Exception taxonomy for chat and repository operations.

Bootstrap and engine operations raise these to their caller; the poller
logs them and moves on to the next chat.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for every error raised by commitchat."""


# ---------------------------------------------------------------------------
# Repository layer
# ---------------------------------------------------------------------------


class RepositoryError(ChatError):
    """A repository operation failed."""


class GitCommandError(RepositoryError):
    """Raised when a git command fails."""

    def __init__(self, command: str, stderr: str, returncode: int) -> None:
        self.command = command
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(f"git {command} failed (exit {returncode}): {stderr}")


class UnknownHostKeyError(RepositoryError):
    """The remote host is not in the operator's known-hosts store."""

    def __init__(self, host: str) -> None:
        self.host = host
        super().__init__(f"authenticity of host {host!r} can't be established")


class EmptyRemoteError(RepositoryError):
    """The remote repository exists but has no commits."""


class AlreadyExistsError(RepositoryError):
    """The clone destination already holds a repository."""


class PushRejectedError(RepositoryError):
    """The remote refused the push (non fast-forward or protected branch)."""


class AuthenticationError(RepositoryError):
    """The remote refused our credentials."""


class NoParentCommitError(RepositoryError):
    """HEAD has no parent, so it cannot be reset away."""


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class IdentityNotConfiguredError(ChatError):
    """git user.name / user.email is not set."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"git config {key} is not set")


# ---------------------------------------------------------------------------
# Chat info file
# ---------------------------------------------------------------------------


class ChatInfoError(ChatError):
    """The chat info file could not be read, parsed or written."""


class ChatInfoNotFoundError(ChatInfoError):
    """The chat info file does not exist yet."""


# ---------------------------------------------------------------------------
# Chat lifecycle
# ---------------------------------------------------------------------------


class InvalidChatURLError(ChatError):
    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"no chat name in URL {url!r}: expected .../<group>/<name>.git")


class ChatAlreadyAddedError(ChatError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"chat {name!r} is already added")


class ChatNotFoundError(ChatError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"chat {name!r} is not registered")


class CurrentChatUnsetError(ChatError):
    def __init__(self) -> None:
        super().__init__("no chat is selected")


class CommitChatInfoError(ChatError):
    """Committing a freshly created info file failed; the file was removed."""


class PushChatInfoError(ChatError):
    """Pushing a freshly created info file failed; the commit was rolled back.

    When the rollback itself failed, ``__cause__`` is a ResetLastCommitError
    and the local chat directory has been deleted.
    """


class ResetLastCommitError(ChatError):
    """The last commit could not be reset, so the local clone was removed."""


class SendMessageError(ChatError):
    """A message commit could not be pushed; the local commit was undone."""


def describe_error(exc: BaseException) -> str:
    """User-facing text for a failed add/select/send, for the display layer."""
    if isinstance(exc, UnknownHostKeyError):
        return (
            f"The authenticity of host {exc.host} can't be established.\n"
            "Are you sure you want to continue connecting?"
        )
    if isinstance(exc, ChatAlreadyAddedError):
        return "Chat is already added. Nothing to do."
    if isinstance(exc, InvalidChatURLError):
        return "Chat address must look like <host>/<group>/<name>.git."
    if isinstance(exc, CommitChatInfoError):
        return (
            "Failed to commit new chat info file, so removed chat info file. "
            "Please check your authorization and try add chat again."
        )
    if isinstance(exc, PushChatInfoError):
        if isinstance(exc.__cause__, ResetLastCommitError):
            return (
                "Failed to push new chat info file and reset it, so removed chat entirely. "
                "Please check your authorization and try add chat again."
            )
        return (
            "Failed to push new chat info file, so reset this last commit. "
            "Please check your authorization and try add chat again."
        )
    if isinstance(exc, CurrentChatUnsetError):
        return "Select a chat first."
    if isinstance(exc, SendMessageError):
        return "Message was not delivered. Please check your authorization and try again."
    return f"Unexpected error: {exc}. For more info look into logs."
