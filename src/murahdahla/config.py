"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Chat platform hard limit for a single message body.
MESSAGE_CHAR_LIMIT = 2000


class Settings(BaseSettings):
    """Murahdahla configuration.

    All values can be overridden via environment variables or .env file.
    """

    # Discord
    discord_bot_token: str = ""
    discord_enabled: bool = False
    command_prefix: str = "!"
    discord_call_timeout_seconds: float = 10.0

    # Seed metadata (alttpr.com, samus.link)
    seed_lookup_timeout_seconds: float = 10.0

    # HTTP server
    host: str = "127.0.0.1"
    port: int = 8000

    # Database
    database_url: str = "sqlite+aiosqlite:///murahdahla.db"

    # Environment
    murahdahla_env: str = "development"

    # Cross-server override for the bot operator; also receives failure DMs
    maintenance_user_id: str = ""

    # Groups
    max_groups_per_server: int = 10

    # Logging
    murahdahla_log_level: str = "INFO"

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @field_validator("maintenance_user_id")
    @classmethod
    def _maintenance_user_is_snowflake(cls, value: str) -> str:
        value = value.strip()
        if value and not value.isdigit():
            msg = "MAINTENANCE_USER_ID must be a numeric Discord user ID"
            raise ValueError(msg)
        return value

    @property
    def maintenance_user(self) -> int | None:
        """The maintenance user's Discord ID, or None when unset."""
        return int(self.maintenance_user_id) if self.maintenance_user_id else None
