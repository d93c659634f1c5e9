"""ContentBase settings.

All options come from ``CONTENTBASE_*`` environment variables or a ``.env``
file and are validated once, when the settings object is built.
"""

import re
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url

TABLE_PREFIX_PATTERN = re.compile(r"^[a-z][a-z0-9]*$")


class Settings(BaseSettings):
    """Runtime configuration of the collection engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CONTENTBASE_",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "ContentBase"
    app_version: str = "0.1.0"
    environment: Literal["development", "production", "testing"] = "development"
    debug: bool = False

    # Storage
    database_url: str = "sqlite+aiosqlite:///./cb_data/contentbase.db"
    db_echo: bool = False
    db_pool_size: int = Field(default=5, ge=1)
    db_max_overflow: int = Field(default=10, ge=0)
    db_pool_timeout: int = Field(default=30, ge=1)
    db_pool_recycle: int = 3600
    db_sqlite_foreign_keys: bool = True
    db_sqlite_busy_timeout: int = Field(default=5000, ge=0, description="Milliseconds")

    # Collections
    table_prefix: str = Field(
        default="cm",
        description="Prefix of every physical collection and relation table",
    )
    default_page_size: int = Field(default=25, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "console"] = "json"

    @field_validator("table_prefix")
    @classmethod
    def validate_table_prefix(cls, v: str) -> str:
        if not TABLE_PREFIX_PATTERN.match(v):
            raise ValueError(
                "table_prefix must start with a lowercase letter and contain only "
                "lowercase letters and digits"
            )
        return v

    @model_validator(mode="after")
    def validate_page_sizes(self) -> "Settings":
        if self.default_page_size > self.max_page_size:
            raise ValueError(
                f"default_page_size ({self.default_page_size}) cannot exceed "
                f"max_page_size ({self.max_page_size})"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_sqlite(self) -> bool:
        return make_url(self.database_url).get_backend_name() == "sqlite"

    @property
    def sqlite_path(self) -> Path | None:
        """File of a SQLite database; None for other backends and in-memory databases."""
        if not self.is_sqlite:
            return None
        database = make_url(self.database_url).database
        if not database or database == ":memory:":
            return None
        return Path(database)


@lru_cache
def get_settings() -> Settings:
    """Load the settings once and reuse them."""
    return Settings()
