"""Runtime configuration for the chatledger services."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="chatledger_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Datastore
    mongodb_uri: str | None = None
    mongodb_db_name: str = "logdb"
    mongodb_app_name: str = "chatledger"
    mongodb_max_pool_size: int = 20
    mongodb_server_selection_timeout_ms: int = 5000
    query_timeout_ms: int = 30000  # applied to every read

    # Collections
    chats_collection: str = "chats"
    usage_collection: str = "usagelogs"
    bot_collection: str = "botchats"
    users_collection: str = "users"
    channels_collection: str = "channels"

    # Report defaults
    max_export_rows: int = 10000
    default_page_size: int = 100
    default_match_window_sec: int = 60

    # Batch workflow defaults (clamped per request)
    customer_batch_size: int = 200
    channel_chunk_size: int = 25
    max_workers: int = 1
    pause_ms: int = 200
    max_retries: int = 2

    # CORS
    cors_allow_origins: tuple[str, ...] = ()
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("GET", "POST", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("*",)

    # Security
    api_key: str | None = None  # if set, required in X-API-Key header
    rate_limit_requests: int = 60  # per window per client
    rate_limit_window_seconds: int = 60


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
