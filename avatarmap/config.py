"""
Configuration management for the avatar cache pipeline.

Uses pydantic-settings for type-safe configuration with environment variable support.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Output formats Pillow can write for us, mapped to file extensions
IMAGE_FORMATS = {
    "jpeg": "jpg",
    "webp": "webp",
    "png": "png",
}


class PipelineSettings(BaseSettings):
    """Pipeline settings: directories, HTTP behaviour and throttling."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Directories
    data_dir: Path = Field(default=Path("./_data"))
    mapping_dir: Path = Field(default=Path("./_data/avatarmap"))
    cache_dir: Path = Field(default=Path("./img/avatar-local-cache"))

    # Logging
    log_level: str = "INFO"

    # HTTP settings
    http_timeout: float = 30.0  # seconds
    http_max_attempts: int = Field(default=2, ge=1)  # first try + one retry
    http_retry_delay: float = Field(default=1.0, ge=0)  # seconds
    http_max_retry_after: float = Field(default=60.0, ge=0)  # cap on a host's Retry-After, seconds

    # Throttling
    concurrency: int = Field(default=1, ge=1)  # fetch workers per source
    source_workers: int = Field(default=2, ge=1)  # sources processed in parallel


class AvatarSettings(BaseSettings):
    """Avatar image settings."""

    model_config = SettingsConfigDict(
        env_prefix="AVATAR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    width: int = Field(default=73, ge=1)
    formats: list[str] = Field(default_factory=lambda: ["jpeg", "webp"])
    skip_cached: bool = False
    twitter_url_template: str = "https://twitter.com/{handle}/profile_image?size=bigger"

    @field_validator("formats", mode="before")
    @classmethod
    def normalize_formats(cls, v):
        """Accept a comma separated string, lowercase names and map jpg to jpeg."""
        if isinstance(v, str):
            v = [part for part in v.split(",") if part.strip()]
        formats = []
        for fmt in v:
            fmt = str(fmt).strip().lower()
            if fmt == "jpg":
                fmt = "jpeg"
            if fmt not in IMAGE_FORMATS:
                raise ValueError(f"Unsupported image format: {fmt}")
            if fmt not in formats:
                formats.append(fmt)
        if not formats:
            raise ValueError("At least one image format is required")
        return formats


class Settings(BaseSettings):
    """Main settings class that combines all settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    avatar: AvatarSettings = Field(default_factory=AvatarSettings)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


# Convenience function for quick access
settings = get_settings()
