"""Application configuration management."""
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from sqlalchemy.engine.url import make_url, URL
from typing import Optional
import logging

SQLITE_LOCAL_URL = "sqlite+aiosqlite:///./nero_party.db"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = SQLITE_LOCAL_URL
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # Application
    frontend_url: str = "http://localhost:5173"
    environment: str = "development"

    # Party lifecycle
    max_players_per_party: int = 20
    party_code_max_attempts: int = 10
    completed_party_retention_hours: int = 24
    maintenance_interval_hours: int = 1

    # Scoring constants
    super_vote_cost: int = 2
    super_vote_weight: float = 1.5
    bonus_category_points: int = 10

    @model_validator(mode="after")
    def validate_all_config(self):
        """Validate game configuration and normalize Postgres URLs."""
        logger = logging.getLogger(__name__)

        if self.max_players_per_party < 2:
            raise ValueError("max_players_per_party must be at least 2")

        if self.party_code_max_attempts < 1:
            raise ValueError("party_code_max_attempts must be at least 1")

        if self.completed_party_retention_hours < 1:
            raise ValueError("completed_party_retention_hours must be at least 1 hour")

        if self.maintenance_interval_hours < 1:
            raise ValueError("maintenance_interval_hours must be at least 1 hour")

        if self.super_vote_cost < 0:
            raise ValueError("super_vote_cost cannot be negative")

        # Database URL normalization
        url = self.database_url
        if not url:
            logger.warning("Empty DATABASE_URL, using SQLite fallback")
            self.database_url = SQLITE_LOCAL_URL
            return self

        parsed: Optional[URL] = None
        try:
            parsed = make_url(url)
        except Exception as e:  # pragma: no cover
            logger.error(f"Failed to parse DATABASE_URL: {e}")
            self.database_url = SQLITE_LOCAL_URL
            return self

        drivername = parsed.drivername
        if drivername.startswith("postgres") and "+asyncpg" not in drivername:
            old_drivername = drivername
            parsed = parsed.set(drivername="postgresql+asyncpg")
            logger.info(f"Driver normalized: {old_drivername} -> {parsed.drivername}")

        # Use render_as_string to properly re-encode special characters in password
        self.database_url = parsed.render_as_string(hide_password=False)
        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
