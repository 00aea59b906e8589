"""Chat rooms backed by git repositories: one repo per chat, one commit per message."""

__version__ = "0.1.0"
