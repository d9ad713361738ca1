"""
Settings for the projectchat real-time server.

Values are read from the environment (prefix ``PROJECTCHAT_``) or a local
``.env`` file. ``jwt_secret`` has no default; starting without it is a
configuration error.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Defaults shared with the components that can be constructed without Settings
MAX_CONNECTIONS_PER_USER = 10
MESSAGE_RATE_LIMIT = 10  # messages per window
MESSAGE_RATE_WINDOW = 60.0  # seconds
MAX_MESSAGE_LENGTH = 5000  # characters
TYPING_TIMEOUT = 5.0  # seconds
PROFILE_CACHE_TTL = 5 * 60.0  # seconds
CHAT_ROOM_LIMIT = 50
STALE_SWEEP_INTERVAL = 5 * 60.0  # seconds
STATS_INTERVAL = 60.0  # seconds
MAX_FRAME_SIZE = 1024 * 1024  # 1MB max frame size
RECEIVE_TIMEOUT = 60.0  # seconds


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PROJECTCHAT_",
        env_file=".env",
        extra="ignore",
    )

    jwt_secret: str = Field(..., min_length=1)
    jwt_algorithm: str = "HS256"

    # Empty means the in-memory store (development only)
    database_url: str = ""
    database_min_connections: int = Field(2, ge=1)
    database_max_connections: int = Field(10, ge=1)

    ws_path: str = "/ws"
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    max_connections_per_user: int = Field(MAX_CONNECTIONS_PER_USER, ge=1)
    message_rate_limit: int = Field(MESSAGE_RATE_LIMIT, ge=1)
    message_rate_window: float = Field(MESSAGE_RATE_WINDOW, gt=0)
    max_message_length: int = Field(MAX_MESSAGE_LENGTH, ge=1)
    typing_timeout: float = Field(TYPING_TIMEOUT, gt=0)
    profile_cache_ttl: float = Field(PROFILE_CACHE_TTL, ge=0)
    chat_room_limit: int = Field(CHAT_ROOM_LIMIT, ge=1)
    stale_sweep_interval: float = Field(STALE_SWEEP_INTERVAL, gt=0)
    stats_interval: float = Field(STATS_INTERVAL, gt=0)
    max_frame_size: int = Field(MAX_FRAME_SIZE, ge=1)
    receive_timeout: float = Field(RECEIVE_TIMEOUT, gt=0)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


__all__ = ["Settings"]
