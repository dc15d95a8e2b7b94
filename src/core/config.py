"""Application configuration using Pydantic Settings v2.

Loads configuration from environment variables with .env file support.
All settings are validated at startup and available as typed attributes.
"""

from __future__ import annotations

import functools
import json
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_str_list(v: Any, default: list[str]) -> list[str]:
    """Parse a list setting given as a JSON string, comma-separated string or list."""
    if isinstance(v, str):
        try:
            parsed = json.loads(v)
            if isinstance(parsed, list):
                return [str(item) for item in parsed]
        except (json.JSONDecodeError, TypeError):
            return [item.strip() for item in v.split(",") if item.strip()]
    if isinstance(v, list | tuple):
        return [str(item) for item in v]
    return list(default)


class Settings(BaseSettings):
    """Reconciliation service settings.

    Configuration is loaded from environment variables.
    A .env file in the project root is also read if present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────
    app_name: str = "RailSync Reconciliation"
    app_env: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # ── PostgreSQL ───────────────────────────────────────────────
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "railsync"
    postgres_user: str = "railsync"
    postgres_password: str = "railsync_dev_password"
    database_url: str | None = None

    # ── Backend ──────────────────────────────────────────────────
    backend_host: str = "0.0.0.0"  # noqa: S104 - intentional for container deployments  # nosec B104
    backend_port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000"]

    # ── Discrepancy listing ──────────────────────────────────────
    reconciliation_default_page_size: int = 25
    reconciliation_max_page_size: int = 200

    # ── Reconciliation runner ────────────────────────────────────
    count_mismatch_critical_pct: float = 5.0
    safety_critical_entity_types: list[str] = ["cars", "customers", "contracts", "invoices"]

    # ── Duplicate detection ──────────────────────────────────────
    duplicate_fuzzy_threshold: float = 90.0  # rapidfuzz score, 0-100
    duplicate_min_confidence: float = Field(0.4, gt=0.0, le=1.0)
    duplicate_pair_limit: int = 500
    duplicate_scan_limit: int = 5000

    # ── Go-live readiness ────────────────────────────────────────
    golive_min_resolution_rate: int = 95
    golive_min_parallel_days: int = 14
    golive_min_runs: int = 10

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from JSON string or list."""
        return _parse_str_list(v, ["http://localhost:3000"])

    @field_validator("safety_critical_entity_types", mode="before")
    @classmethod
    def parse_safety_critical_entity_types(cls, v: Any) -> list[str]:
        """Parse safety-critical entity types from JSON string or list."""
        return [item.lower() for item in _parse_str_list(v, [])]

    @model_validator(mode="after")
    def build_derived_urls(self) -> Settings:
        """Build database_url from components if not set."""
        if not self.database_url:
            self.database_url = (
                f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            )
        return self


@functools.lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()
