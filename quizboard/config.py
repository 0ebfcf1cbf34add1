"""
Configuration and settings for the quizboard service.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
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
    api_host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(
        default=3001, validation_alias=AliasChoices("API_PORT", "PORT")
    )
    cors_allowed_origins: list[str] = Field(
        default=["*"], validation_alias="CORS_ALLOWED_ORIGINS"
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # Storage engine selection: "mysql" or anything else for the SQLite file.
    db_client: str = Field(default="", validation_alias="DB_CLIENT")
    db_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("DB_URL", "DATABASE_URL")
    )

    # MySQL, used when no DB_URL is given
    db_host: str = Field(default="localhost", validation_alias="DB_HOST")
    db_port: int = Field(default=3306, validation_alias="DB_PORT")
    db_user: str = Field(default="root", validation_alias="DB_USER")
    db_password: str = Field(default="", validation_alias="DB_PASSWORD")
    db_database: str = Field(default="appdb", validation_alias="DB_DATABASE")
    db_ssl: bool = Field(default=False, validation_alias="DB_SSL")
    db_pool_size: int = Field(default=10, ge=1, validation_alias="DB_POOL_SIZE")

    # SQLite file engine
    data_dir: str = Field(default="data", validation_alias="DATA_DIR")
    sqlite_filename: str = Field(default="app.db", validation_alias="SQLITE_FILENAME")

    @property
    def uses_mysql(self) -> bool:
        if self.db_client.strip().lower() == "mysql":
            return True
        return bool(self.db_url) and self.db_url.startswith("mysql")

    @property
    def sqlite_path(self) -> Path:
        return Path(self.data_dir) / self.sqlite_filename


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
