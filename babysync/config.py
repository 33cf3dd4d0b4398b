"""
Configuration and settings for the sync service.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")

    # Database: any SQLAlchemy URL; falls back to a SQLite file at db_path.
    database_url: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")
    db_path: str = Field(default="data/babyschlaf.db", validation_alias="DB_PATH")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="BABYSYNC_USE_IN_MEMORY_BACKENDS"
    )

    # HTTP server
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=3000, validation_alias="PORT")

    # Client timestamps later than now + this many seconds are clamped.
    max_clock_skew_seconds: int = Field(
        default=0, ge=0, validation_alias="BABYSYNC_MAX_CLOCK_SKEW_SECONDS"
    )

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    def resolved_database_url(self) -> str:
        """Return database_url, or a SQLite URL for db_path (creating its directory)."""
        if self.database_url:
            return self.database_url
        path = Path(self.db_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite+pysqlite:///{path}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
