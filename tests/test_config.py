"""
Tests for configuration loading and database overrides.
"""

import pytest
from pydantic import ValidationError

from catalog_ingest.config import ConfigManager, IngestConfig, get_config_from_env, parse_subjects
from catalog_ingest.db.models import IngestSettings


class TestEnvConfig:
    """Test configuration from environment variables."""

    def test_defaults(self, monkeypatch):
        for name in (
            "INGEST_BOOKS_MAX", "INGEST_AUTHORS_MAX", "INGEST_SUBJECTS", "INGEST_BOOKS_BATCH_SIZE",
            "INGEST_FRESH_DAYS", "INGEST_RPS", "INGEST_MAX_RETRIES", "INGEST_ENABLED", "INTERNAL_JOBS_SECRET",
        ):
            monkeypatch.delenv(name, raising=False)

        config = get_config_from_env()

        assert config.books_max == 100
        assert config.authors_max == 100
        assert config.subjects == ["fiction", "history", "science"]
        assert config.batch_size == 50
        assert config.fresh_days == 7
        assert config.rps == 1
        assert config.max_retries == 3
        assert config.ingest_enabled is False
        assert config.internal_jobs_secret is None

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("INGEST_BOOKS_MAX", "500")
        monkeypatch.setenv("INGEST_SUBJECTS", " poetry , ,drama ")
        monkeypatch.setenv("INGEST_BOOKS_BATCH_SIZE", "20")
        monkeypatch.setenv("INGEST_RPS", "0.5")
        monkeypatch.setenv("INGEST_ENABLED", "true")
        monkeypatch.setenv("INTERNAL_JOBS_SECRET", "s3cret")

        config = get_config_from_env()

        assert config.books_max == 500
        assert config.subjects == ["poetry", "drama"]
        assert config.batch_size == 20
        assert config.rps == 0.5
        assert config.ingest_enabled is True
        assert config.internal_jobs_secret == "s3cret"

    def test_parse_subjects_falls_back_to_defaults(self):
        assert parse_subjects("") == ["fiction", "history", "science"]
        assert parse_subjects(None) == ["fiction", "history", "science"]


class TestValidation:
    """Test configuration validation."""

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValidationError):
            IngestConfig(batch_size=0)

    def test_rps_must_be_positive(self):
        with pytest.raises(ValidationError):
            IngestConfig(rps=0)

    def test_enabled_requires_secret(self):
        with pytest.raises(ValueError, match="INTERNAL_JOBS_SECRET"):
            IngestConfig(ingest_enabled=True).validate_for_startup()

    def test_enabled_with_secret_is_valid(self):
        IngestConfig(ingest_enabled=True, internal_jobs_secret="s").validate_for_startup()

    def test_disabled_without_secret_is_valid(self):
        IngestConfig().validate_for_startup()


class TestConfigManager:
    """Test database overrides of the ingestion targets."""

    def test_env_config_without_db_settings(self, db):
        env = IngestConfig(books_max=42)

        with db.get_db_session() as session:
            config = ConfigManager(db_session=session, env_config=env).get_config()

        assert config.books_max == 42

    def test_db_values_take_precedence(self, db):
        env = IngestConfig(books_max=42, authors_max=7, rps=3)

        with db.get_db_session() as session:
            session.add(IngestSettings(books_max=1000, subjects="art,music"))

        with db.get_db_session() as session:
            config = ConfigManager(db_session=session, env_config=env).get_config()

        assert config.books_max == 1000
        assert config.subjects == ["art", "music"]
        assert config.authors_max == 7
        assert config.rps == 3

    def test_save_config_round_trips(self, db):
        env = IngestConfig()

        with db.get_db_session() as session:
            manager = ConfigManager(db_session=session, env_config=env)
            manager.save_config(IngestConfig(books_max=5, authors_max=6, subjects=["poetry"], batch_size=2, fresh_days=0))

        with db.get_db_session() as session:
            config = ConfigManager(db_session=session, env_config=env).get_config()

        assert config.books_max == 5
        assert config.authors_max == 6
        assert config.subjects == ["poetry"]
        assert config.batch_size == 2
        assert config.fresh_days == 0

    def test_save_without_session_raises(self):
        with pytest.raises(RuntimeError):
            ConfigManager(env_config=IngestConfig()).save_config(IngestConfig())
