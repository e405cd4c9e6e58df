"""
Application configuration models and helpers.

Centralizes settings management so the Identity Authority service, the edge
application and the client-side sync loop share a consistent configuration
surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

import os

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class SyncSettings(BaseSettings):
    """Token lifetimes, shared secret and snapshot filters for the sync protocol."""

    model_config = SettingsConfigDict(populate_by_name=True)

    shared_secret: Optional[str] = Field(
        None,
        validation_alias="SYNC_SHARED_SECRET",
        description=(
            "Pre-shared value required in the X-Sync-Secret header of every "
            "server-to-server call. Requests are rejected while it is unset."
        ),
    )
    exchange_token_ttl_seconds: int = Field(
        120, validation_alias="SYNC_EXCHANGE_TOKEN_TTL"
    )
    persistent_token_ttl_seconds: int = Field(
        300, validation_alias="SYNC_PERSISTENT_TOKEN_TTL"
    )
    auto_sync_roles: Annotated[tuple[str, ...], NoDecode] = Field(
        ("administrator",),
        validation_alias="SYNC_AUTO_SYNC_ROLES",
    )
    snapshot_limit: int = Field(10, validation_alias="SYNC_SNAPSHOT_LIMIT")
    token_hash_rounds: int = Field(
        12,
        validation_alias="SYNC_TOKEN_HASH_ROUNDS",
        description="bcrypt cost factor used for exchange token hashes.",
    )

    @field_validator("auto_sync_roles", mode="before")
    @classmethod
    def _split_roles(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing roles as a comma-separated string."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(role.strip() for role in value.split(",") if role.strip())


class StorageSettings(BaseSettings):
    """Locations of the SQLite databases."""

    model_config = SettingsConfigDict(populate_by_name=True)

    authority_db_path: str = Field(
        "data/authority.sqlite3", validation_alias="AUTHORITY_DB_PATH"
    )
    edge_db_path: str = Field(
        "data/edge.sqlite3", validation_alias="EDGE_DB_PATH"
    )


class SessionSettings(BaseSettings):
    """Identity Authority browser session configuration."""

    model_config = SettingsConfigDict(populate_by_name=True)

    cookie_name: str = Field(
        "authority_session", validation_alias="SESSION_COOKIE_NAME"
    )
    ttl_seconds: int = Field(
        60 * 60 * 24 * 2, validation_alias="SESSION_TTL"
    )
    cookie_secure: bool = Field(False, validation_alias="SESSION_COOKIE_SECURE")


class EdgeSettings(BaseSettings):
    """Configuration for the edge application and its client-side sync loop."""

    model_config = SettingsConfigDict(populate_by_name=True)

    app_base_url: HttpUrl = Field(
        "http://localhost:5173",
        validation_alias="EDGE_APP_BASE_URL",
        description="Public URL of the edge application; target of token redirects.",
    )
    authority_base_url: HttpUrl = Field(
        "http://localhost:8000",
        validation_alias="AUTHORITY_BASE_URL",
    )
    session_secret: Optional[str] = Field(
        None,
        validation_alias="EDGE_SESSION_SECRET",
        description="Key for signing the edge session cookie. Falls back to the shared secret.",
    )
    session_cookie_name: str = Field(
        "edge_session", validation_alias="EDGE_SESSION_COOKIE_NAME"
    )
    session_cookie_secure: bool = Field(
        False, validation_alias="EDGE_SESSION_COOKIE_SECURE"
    )
    snapshot_poll_seconds: float = Field(
        0.0,
        validation_alias="EDGE_SNAPSHOT_POLL_SECONDS",
        description="Interval for bulk snapshot reconciliation. Zero disables the poller.",
    )
    stream_reconnect_seconds: float = Field(
        5.0, validation_alias="EDGE_STREAM_RECONNECT_SECONDS"
    )
    stream_keepalive_seconds: float = Field(
        20.0, validation_alias="EDGE_STREAM_KEEPALIVE_SECONDS"
    )
    request_attempts: int = Field(3, validation_alias="EDGE_REQUEST_ATTEMPTS")
    request_backoff_seconds: float = Field(
        1.0, validation_alias="EDGE_REQUEST_BACKOFF_SECONDS"
    )
    cache_path: str = Field(
        "data/identity-cache.json", validation_alias="EDGE_CACHE_PATH"
    )


class AppSettings(BaseSettings):
    """Root settings object shared by the authority and edge applications."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    sync: SyncSettings = Field(default_factory=SyncSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    edge: EdgeSettings = Field(default_factory=EdgeSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "EdgeSettings",
    "SessionSettings",
    "StorageSettings",
    "SyncSettings",
    "get_settings",
]
