"""
Configuration management for the group deduplication tool.

Uses pydantic-settings for type-safe configuration with environment variable support.
"""

from pathlib import Path
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DirectorySettings(BaseSettings):
    """Identity directory (Okta) connection settings."""

    model_config = SettingsConfigDict(
        env_prefix="OKTA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    org_url: str = ""  # e.g. https://example.okta.com
    api_token: str = ""  # Required for any real API call: set OKTA_API_TOKEN in .env
    page_size: int = 200
    include_app_groups: bool = False
    user_agent: str = "groupdedup/1.0"

    @field_validator("org_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")


class PipelineSettings(BaseSettings):
    """Run settings: file locations, logging and HTTP policy."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Files
    approval_file: Path = Field(default=Path("./data/duplicate_groups.csv"))
    results_dir: Path = Field(default=Path("./data/results"))
    log_dir: Path = Field(default=Path("./logs"))

    # Logging
    log_level: str = "INFO"

    # HTTP settings
    http_timeout: int = 30  # seconds
    http_max_retries: int = 5  # total attempts per call
    rate_limit_threshold: int = 5  # pause when remaining calls drop to this
    backoff_initial: float = 1.0  # seconds
    backoff_max: float = 30.0  # seconds

    @field_validator("http_max_retries")
    @classmethod
    def at_least_one_attempt(cls, v: int) -> int:
        if v < 1:
            raise ValueError("http_max_retries must be at least 1")
        return v


class Settings(BaseSettings):
    """Main settings class that combines all settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    directory: DirectorySettings = Field(default_factory=DirectorySettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


# Convenience for quick access
settings = get_settings()
