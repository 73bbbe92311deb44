"""
Configuration management for Catalog Ingest Service.
Supports both environment variables and database-stored configuration.
"""

import os
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

from catalog_ingest.api.openlibrary import DEFAULT_USER_AGENT

load_dotenv()

DEFAULT_SUBJECTS = ["fiction", "history", "science"]


class IngestConfig(BaseModel):
    """Configuration for the ingestion service."""

    # Ingestion targets
    books_max: int = Field(default=100, description="Target total number of catalog books")
    authors_max: int = Field(default=100, description="Target total number of catalog authors")
    subjects: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SUBJECTS),
        description="Subjects searched in order"
    )
    batch_size: int = Field(default=50, ge=1, description="ISBNs hydrated per request")
    fresh_days: int = Field(default=7, ge=0, description="Days before a stored entry may be re-fetched")

    # Open Library settings
    rps: float = Field(default=1, gt=0, description="Open Library requests per second")
    max_retries: int = Field(default=3, ge=0, description="Retries for transient Open Library failures")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="Client identifier sent to Open Library")

    # Job settings
    ingest_enabled: bool = Field(default=False, description="Enable the ingestion job")
    internal_jobs_secret: Optional[str] = Field(default=None, description="Shared secret for the job trigger")
    run_timeout_minutes: int = Field(default=30, ge=1, description="Cancel a run after this many minutes")
    ingest_interval_minutes: int = Field(default=0, ge=0, description="Scheduled run interval, 0 disables")

    # Application settings
    database_url: str = Field(
        default="sqlite:///data/catalog-ingest.db",
        description="Database connection URL"
    )
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("subjects")
    @classmethod
    def _strip_subjects(cls, value: List[str]) -> List[str]:
        return [s.strip() for s in value if s and s.strip()]

    def validate_for_startup(self) -> None:
        """
        Raises:
            ValueError: If ingestion is enabled without a job secret
        """
        if self.ingest_enabled and not self.internal_jobs_secret:
            raise ValueError("INTERNAL_JOBS_SECRET is required when ingestion is enabled")


def parse_subjects(value: Optional[str]) -> List[str]:
    if not value:
        return list(DEFAULT_SUBJECTS)
    return [s.strip() for s in value.split(",") if s.strip()]


def get_config_from_env() -> IngestConfig:
    """Load configuration from environment variables."""
    return IngestConfig(
        books_max=int(os.getenv("INGEST_BOOKS_MAX", "100")),
        authors_max=int(os.getenv("INGEST_AUTHORS_MAX", "100")),
        subjects=parse_subjects(os.getenv("INGEST_SUBJECTS")),
        batch_size=int(os.getenv("INGEST_BOOKS_BATCH_SIZE", "50")),
        fresh_days=int(os.getenv("INGEST_FRESH_DAYS", "7")),
        rps=float(os.getenv("INGEST_RPS", "1")),
        max_retries=int(os.getenv("INGEST_MAX_RETRIES", "3")),
        user_agent=os.getenv("INGEST_USER_AGENT", DEFAULT_USER_AGENT),
        ingest_enabled=os.getenv("INGEST_ENABLED", "false").lower() == "true",
        internal_jobs_secret=os.getenv("INTERNAL_JOBS_SECRET") or None,
        run_timeout_minutes=int(os.getenv("INGEST_RUN_TIMEOUT_MINUTES", "30")),
        ingest_interval_minutes=int(os.getenv("INGEST_INTERVAL_MINUTES", "0")),
        database_url=os.getenv("DATABASE_URL", "sqlite:///data/catalog-ingest.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


class ConfigManager:
    """
    Manages configuration with fallback from database to environment variables.
    """

    def __init__(self, db_session=None, env_config: Optional[IngestConfig] = None):
        self.db_session = db_session
        self._env_config = env_config or get_config_from_env()

    def load_from_db(self):
        """Load ingestion settings from database if available."""
        if not self.db_session:
            return None

        from catalog_ingest.db.models import IngestSettings
        return self.db_session.query(IngestSettings).first()

    def get_config(self) -> IngestConfig:
        """
        Get configuration, merging database values with environment variables.
        Database values take precedence over environment variables.
        """
        db_config = self.load_from_db()

        if db_config:
            env = self._env_config
            return env.model_copy(update={
                "books_max": db_config.books_max if db_config.books_max is not None else env.books_max,
                "authors_max": db_config.authors_max if db_config.authors_max is not None else env.authors_max,
                "subjects": parse_subjects(db_config.subjects) if db_config.subjects else env.subjects,
                "batch_size": db_config.batch_size or env.batch_size,
                "fresh_days": db_config.fresh_days if db_config.fresh_days is not None else env.fresh_days,
            })

        return self._env_config

    def save_config(self, config: IngestConfig) -> None:
        """Save the ingestion targets to database."""
        if not self.db_session:
            raise RuntimeError("Database session not available")

        from catalog_ingest.db.models import IngestSettings

        db_config = self.load_from_db()
        if not db_config:
            db_config = IngestSettings()
            self.db_session.add(db_config)

        db_config.books_max = config.books_max
        db_config.authors_max = config.authors_max
        db_config.subjects = ",".join(config.subjects)
        db_config.batch_size = config.batch_size
        db_config.fresh_days = config.fresh_days

        self.db_session.commit()
