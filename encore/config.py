"""
Configuration — environment driven settings.

    ENCORE_LOCK_TTL_SECONDS=300
    ENCORE_RESULT_TTL_SECONDS=86400
    ENCORE_REDIS_URL=redis://localhost:6379/0
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from encore.idempotency._types import DUPLICATE_MESSAGE


class EncoreSettings(BaseSettings):
    """Settings loaded from ENCORE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ENCORE_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    # Idempotency policy
    lock_ttl_seconds: float | None = None
    result_ttl_seconds: float | None = None
    release_lock_on_failure: bool = False
    duplicate_message: str = DUPLICATE_MESSAGE

    # Redis store
    redis_url: str | None = None
    key_prefix: str = "encore:"

    # Logging
    log_level: str = "INFO"
    log_json: bool = True


__all__ = ("EncoreSettings",)
