"""
Client Dedupe Configuration Settings
"""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Store
    db_path: Path = Field(
        default=Path("./data/clients.db"),
        alias="CLIENTS_DB_PATH",
        description="SQLite database holding crm_clients and its dependent tables"
    )
    lock_timeout: float = Field(
        default=5.0,
        alias="DEDUP_LOCK_TIMEOUT",
        description="Seconds to wait for the store write lock before aborting a merge"
    )

    # Matching
    default_country_code: str = Field(
        default="",
        alias="DEDUP_DEFAULT_COUNTRY_CODE",
        description="Country calling code (digits only, e.g. 43) used to expand national phone numbers"
    )
    default_limit: int = Field(default=50, alias="DEDUP_DEFAULT_LIMIT")
    default_strategy: str = Field(default="keep-oldest", alias="DEDUP_DEFAULT_STRATEGY")

    # Admin server
    port: int = Field(default=8010, alias="DEDUP_PORT")
    host: str = Field(default="127.0.0.1", alias="DEDUP_HOST")

    @property
    def country_code(self) -> Optional[str]:
        """Configured country code with any '+' or spacing removed, or None."""
        digits = "".join(ch for ch in self.default_country_code if ch.isdigit())
        return digits or None


settings = Settings()
