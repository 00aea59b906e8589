"""Centralized configuration — Pydantic BaseSettings with TOML + dotenv sources.

Settings live in commitchat.toml. Environment variables override it using
``__`` as the nested delimiter (e.g. ``INTERVALS__CHAT_POLL=2``).

Priority (highest wins): init args > env vars > .env > commitchat.toml

Usage::

    from commitchat.config import get_settings

    s = get_settings()
    print(s.chats_dir)
    print(s.intervals.chat_poll)
"""

from __future__ import annotations

from functools import cached_property
from pathlib import Path

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in commitchat.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models — reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class StorageConfig(_StrictModel):
    chats_dir: str | None = None  # None → ~/.local/share/commitchat/chats


class IntervalsConfig(_StrictModel):
    chat_poll: float = 0.5  # seconds

    @field_validator("chat_poll")
    @classmethod
    def validate_chat_poll(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("chat_poll must be positive")
        return v


class GitConfig(_StrictModel):
    default_branch: str = "main"
    command_timeout: int = 30  # seconds, per git subprocess
    known_hosts: str | None = None  # None → ~/.ssh/known_hosts

    @field_validator("command_timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("command_timeout must be positive")
        return v


class NotificationsConfig(_StrictModel):
    max_queued: int = 256  # oldest events are dropped beyond this

    @field_validator("max_queued")
    @classmethod
    def clamp_max_queued(cls, v: int) -> int:
        return max(1, v)


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="commitchat.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    storage: StorageConfig = StorageConfig()
    intervals: IntervalsConfig = IntervalsConfig()
    git: GitConfig = GitConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > commitchat.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def home_dir(self) -> Path:
        return Path.home()

    @cached_property
    def chats_dir(self) -> Path:
        if self.storage.chats_dir:
            return Path(self.storage.chats_dir).expanduser().resolve()
        return self.home_dir / ".local" / "share" / "commitchat" / "chats"

    @cached_property
    def known_hosts_path(self) -> Path:
        if self.git.known_hosts:
            return Path(self.git.known_hosts).expanduser()
        return self.home_dir / ".ssh" / "known_hosts"


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
