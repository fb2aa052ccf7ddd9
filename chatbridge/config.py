"""Application configuration."""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONTAINER_TIMEOUT_MS = 300_000


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    assistant_name: str = Field(default="Andy", alias="ASSISTANT_NAME")
    # Empty token disables the Discord channel.
    discord_bot_token: str = Field(default="", alias="DISCORD_BOT_TOKEN")
    groups_dir: Path = Field(default=Path("groups"), alias="GROUPS_DIR")
    registered_groups_path: Path = Field(
        default=Path("data") / "registered_groups.json",
        alias="REGISTERED_GROUPS_PATH",
    )
    # Lives outside every container-visible directory and is never mounted.
    mount_allowlist_path: Path = Field(
        default=Path.home() / ".config" / "chatbridge" / "mount-allowlist.json",
        alias="MOUNT_ALLOWLIST_PATH",
    )
    main_group_folder: str = Field(default="main", alias="MAIN_GROUP_FOLDER")
    max_attachment_download_size: int = Field(
        default=25 * 1024 * 1024,
        alias="MAX_ATTACHMENT_DOWNLOAD_SIZE",
    )
    container_timeout_ms: int = Field(default=DEFAULT_CONTAINER_TIMEOUT_MS, alias="CONTAINER_TIMEOUT")
    agent_command: str = Field(default="", alias="AGENT_COMMAND")
    poll_interval_seconds: float = Field(default=2.0, alias="POLL_INTERVAL_SECONDS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def trigger_pattern(assistant_name: str) -> re.Pattern[str]:
    """Return the pattern a message must match to address the assistant.

    Matches ``@Name`` at the start of the text as a whole word, ignoring case.
    """
    return re.compile(rf"^@{re.escape(assistant_name)}\b", re.IGNORECASE)
