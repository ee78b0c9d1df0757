"""
Process-wide settings for export storage.

Values are read from ``EXPORT_STORAGE_*`` environment variables or a ``.env``
file. Destination-specific values live in ``ExportStorageConf`` instead.
"""
import tempfile
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Export storage settings."""

    model_config = SettingsConfigDict(
        env_prefix="EXPORT_STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    # Staging directory for providers that upload from local disk
    TEMP_PATH: str = str(Path(tempfile.gettempdir()) / "export-storage")

    # Streaming
    READ_CHUNK_SIZE: int = 1024 * 1024  # 1MB

    # HTTP provider
    HTTP_TIMEOUT: float = 300.0
    HTTP_USER_AGENT: str = "export-storage/1.0"

    # S3 provider
    S3_DEFAULT_REGION: str = "us-east-1"

    # Logging
    LOG_LEVEL: str = "info"
    LOG_JSON: bool = False

    @field_validator("TEMP_PATH")
    @classmethod
    def ensure_path_exists(cls, v):
        path = Path(v)
        path.mkdir(parents=True, exist_ok=True)
        return str(path)

    @field_validator("READ_CHUNK_SIZE")
    @classmethod
    def positive_chunk_size(cls, v):
        if v <= 0:
            raise ValueError("READ_CHUNK_SIZE must be positive")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
