"""
Configuration and settings for the converter service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000, ge=1, le=65535)
    log_level: str = Field(default="INFO")

    # MongoDB (persistent storage). Without a URI the service stays in memory.
    mongodb_uri: Optional[str] = Field(default=None)
    mongodb_db_name: str = Field(default="pdf_converter")

    # Connection pool and timeouts
    mongo_max_pool_size: int = Field(default=10, ge=1)
    mongo_min_pool_size: int = Field(default=5, ge=0)
    mongo_connect_timeout_ms: int = Field(default=30000, ge=1)
    mongo_socket_timeout_ms: int = Field(default=45000, ge=1)
    mongo_server_selection_timeout_ms: int = Field(default=30000, ge=1)

    # Initial connection establishment only; steady-state calls are not retried.
    mongo_max_connection_attempts: int = Field(default=5, ge=1)
    mongo_retry_delay_seconds: float = Field(default=2.0, ge=0)
    mongo_connect_attempt_timeout_seconds: float = Field(default=30.0, gt=0)

    # Backend failover probing
    probe_interval_seconds: float = Field(default=30.0, gt=0)
    probe_timeout_seconds: float = Field(default=5.0, gt=0)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Auth
    jwt_secret: str = Field(default="default_jwt_secret_key")
    jwt_algorithm: str = Field(default="HS256")
    jwt_expires_hours: int = Field(default=24, ge=1)

    # Uploads
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
