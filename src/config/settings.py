# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for deployment-specific settings: persistence
backends, resume thresholds, routing threshold, call pacing and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Checkpoint persistence ===
    checkpoint_backend: Literal["json", "sqlite", "redis"] = "json"
    checkpoint_root: Path = Path("~/.stagegate/checkpoints")
    checkpoint_redis_url: str = ""

    # === Resume thresholds ===
    checkpoint_max_retries: int = 3
    checkpoint_max_age_hours: float = 24.0

    # === Project persistence ===
    project_backend: Literal["sqlite", "memory"] = "sqlite"
    project_db_path: Path = Path("~/.stagegate/projects.db")

    # === Decision routing ===
    routing_threshold: float = 0.85

    # === External calls ===
    client_requests_per_second: float = 3.0
    client_max_retries: int = 5
    client_base_delay_s: float = 1.0
    client_max_delay_s: float = 60.0
    client_jitter: float = 0.25

    # === Stage runner ===
    stage_batch_size: int = 50

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("routing_threshold")
    @classmethod
    def validate_routing_threshold(cls, v: float) -> float:
        """Routing threshold is a confidence, so it lives in [0, 1]."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("routing_threshold must be between 0 and 1")
        return v

    @field_validator(
        "checkpoint_max_retries", "client_max_retries", "log_retention"
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.checkpoint_backend == "redis" and not self.checkpoint_redis_url:
            errors.append(
                "CHECKPOINT_BACKEND=redis requires CHECKPOINT_REDIS_URL"
            )

        if self.client_requests_per_second <= 0:
            errors.append("CLIENT_REQUESTS_PER_SECOND must be > 0")

        if self.client_base_delay_s < 0 or self.client_max_delay_s < 0:
            errors.append("CLIENT delays must be >= 0")
        elif self.client_base_delay_s > self.client_max_delay_s:
            errors.append("CLIENT_BASE_DELAY_S must be <= CLIENT_MAX_DELAY_S")

        if not 0.0 <= self.client_jitter < 1.0:
            errors.append("CLIENT_JITTER must be in [0, 1)")

        if self.checkpoint_max_age_hours <= 0:
            errors.append("CHECKPOINT_MAX_AGE_HOURS must be > 0")

        if self.stage_batch_size < 1:
            errors.append("STAGE_BATCH_SIZE must be >= 1")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-stage config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
