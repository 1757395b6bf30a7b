"""
Configuration Management for the ExpenseSight data layer

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Missing backend credentials are NOT an error: the data layer runs in a
"feature disabled" state where reads return empty results and writes
report failure without touching the network.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FirestoreSettings(BaseSettings):
    """Remote document store (Cloud Firestore) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FIRESTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    project_id: Optional[str] = Field(
        default=None,
        description="Google Cloud project that hosts the Firestore database"
    )
    credentials_path: Optional[str] = Field(
        default=None,
        description="Path to a service account credentials JSON. "
                    "If unset, application default credentials are used."
    )
    database: str = Field(
        default="(default)",
        description="Firestore database id"
    )
    root_collection: str = Field(
        default="expenseSight",
        min_length=1,
        description="Top-level collection holding one document per owner"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: Optional[str]) -> Optional[str]:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if v and not Path(v).exists():
            import warnings
            warnings.warn(
                f"Firestore credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v

    @property
    def is_configured(self) -> bool:
        """True when enough configuration exists to reach the backend."""
        return bool(self.project_id)


class CacheSettings(BaseSettings):
    """Local entry cache configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    ttl_seconds: float = Field(
        default=300.0,
        gt=0,
        description="How long a cached read stays visible (5 minutes)"
    )
    max_entries: int = Field(
        default=50,
        ge=1,
        description="Maximum number of cached query results"
    )


class DataLayerSettings(BaseSettings):
    """Limits and timeouts for remote reads and writes."""

    model_config = SettingsConfigDict(
        env_prefix="DATA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backend_max_batch_operations: int = Field(
        default=500,
        ge=1,
        description="Hard per-commit operation ceiling of the backend"
    )
    max_batch_operations: int = Field(
        default=450,
        ge=1,
        description="Chunk size used for batched writes"
    )
    default_limit_count: int = Field(
        default=500,
        ge=1,
        description="Result cap for list queries when the caller gives none"
    )
    remote_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Every remote call fails after this many seconds"
    )
    write_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for idempotent writes on transient failures"
    )

    @model_validator(mode="after")
    def validate_batch_limit(self) -> "DataLayerSettings":
        if self.max_batch_operations > self.backend_max_batch_operations:
            raise ValueError(
                "max_batch_operations cannot exceed backend_max_batch_operations "
                f"({self.max_batch_operations} > {self.backend_max_batch_operations})"
            )
        return self


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def firestore(self) -> FirestoreSettings:
        return FirestoreSettings()

    @property
    def cache(self) -> CacheSettings:
        return CacheSettings()

    @property
    def data(self) -> DataLayerSettings:
        return DataLayerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("firestore", "cache", "data", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    if results.get("firestore"):
        results["firestore_configured"] = settings.firestore.is_configured

    return results
