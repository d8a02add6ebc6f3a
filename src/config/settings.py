# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for all deployment-specific settings. Every field
maps to the upper-cased env var of the same name (CACHE_TTL_HOURS, ...).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gen3d.core.errors import ConfigurationError

__all__ = ["ConfigurationError", "Settings", "load_settings"]


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Cache ===
    cache_enabled: bool = True
    cache_backend: Literal["memory", "sqlite", "redis"] = "memory"
    cache_root: Path = Path("~/.gen3d/cache")
    cache_redis_url: str = ""
    cache_ttl_hours: float = 168
    cache_hot_hit_threshold: int = 5
    cache_max_entries: int = 1000
    cache_cleanup_target: float = 0.7

    # === Similarity matching ===
    similarity_enabled: bool = True
    similarity_threshold: float = 0.85
    similarity_max_candidates: int = 50

    # === Task store ===
    task_store_backend: Literal["memory", "sqlite"] = "memory"
    task_db_path: Path = Path("~/.gen3d/tasks.db")

    # === Provider ===
    provider_name: str = "hunyuan"
    provider_secret_id: str = ""
    provider_secret_key: str = ""
    provider_endpoint: str = "ai3d.tencentcloudapi.com"
    provider_service: str = "ai3d"
    provider_version: str = "2025-05-13"
    provider_region: str = "ap-guangzhou"
    provider_timeout_s: float = 300
    provider_request_timeout_s: float = 30
    provider_retry_count: int = 60
    provider_poll_interval_s: float = 5
    provider_max_prompt_length: int = 1024
    provider_default_result_format: Literal["OBJ", "GLB", "STL", "USDZ", "FBX", "MP4"] = "OBJ"

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path = Path("~/.gen3d/logs/gen3d.log")
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("similarity_threshold")
    @classmethod
    def validate_similarity_threshold(cls, v: float) -> float:  # noqa: N805
        if not 0.0 < v <= 1.0:
            raise ValueError("similarity_threshold must be in (0, 1]")
        return v

    @field_validator("cache_hot_hit_threshold", "provider_retry_count", "cache_max_entries")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.cache_ttl_hours <= 0:
            errors.append("CACHE_TTL_HOURS must be > 0")

        if not 0.0 < self.cache_cleanup_target < 1.0:
            errors.append("CACHE_CLEANUP_TARGET must be in (0, 1)")

        if self.provider_timeout_s <= 0 or self.provider_request_timeout_s <= 0:
            errors.append("Provider timeouts must be > 0")

        if self.provider_poll_interval_s < 0:
            errors.append("PROVIDER_POLL_INTERVAL_S must be >= 0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def provider_configured(self) -> bool:
        """Whether credentials for the provider are present."""
        return bool(self.provider_secret_id and self.provider_secret_key)


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-call config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
