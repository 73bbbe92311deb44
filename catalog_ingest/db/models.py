"""
SQLAlchemy database models for Catalog Ingest Service.
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, DateTime, Text, JSON, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_run_id() -> str:
    return str(uuid.uuid4())


class CatalogBook(Base):
    """Canonical book record, keyed by ISBN-13."""
    __tablename__ = 'catalog_books'

    isbn13 = Column(String(13), primary_key=True)
    title = Column(Text, nullable=False)
    subtitle = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    cover_url = Column(Text, nullable=True)
    published_date = Column(Text, nullable=True)
    publisher = Column(Text, nullable=True)
    language = Column(String(10), nullable=True)
    page_count = Column(Integer, nullable=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class CatalogAuthor(Base):
    """Canonical author record, keyed by the Open Library author key."""
    __tablename__ = 'catalog_authors'

    key = Column(String(50), primary_key=True)
    name = Column(Text, nullable=False)
    birth_date = Column(Text, nullable=True)
    bio = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class CatalogSource(Base):
    """Raw provider payload backing a catalog record."""
    __tablename__ = 'catalog_sources'
    __table_args__ = (
        UniqueConstraint('entity_type', 'entity_key', 'provider', name='uq_catalog_source'),
    )

    id = Column(Integer, primary_key=True)
    entity_type = Column(String(20), nullable=False)  # BOOK, AUTHOR
    entity_key = Column(String(50), nullable=False)
    provider = Column(String(20), nullable=False, default='OPEN_LIBRARY')
    raw_json = Column(JSON, nullable=False)
    fetched_at = Column(DateTime, default=utcnow, nullable=False)


class Book(Base):
    """Denormalized book row read by the serving path."""
    __tablename__ = 'books'

    id = Column(Integer, primary_key=True)
    isbn = Column(String(20), unique=True, index=True, nullable=False)
    title = Column(Text, nullable=False)
    subtitle = Column(Text, nullable=True)
    genre = Column(String(100), nullable=True)
    publisher = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    published_date = Column(Text, nullable=True)
    publication_year = Column(Integer, nullable=True)
    page_count = Column(Integer, nullable=True)
    language = Column(String(10), nullable=True)
    cover_url = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class IngestRun(Base):
    """Represents a single ingestion run (execution)."""
    __tablename__ = 'ingest_runs'

    id = Column(String(36), primary_key=True, default=new_run_id)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    finished_at = Column(DateTime, nullable=True)
    status = Column(String(20), default='RUNNING', nullable=False)  # RUNNING, COMPLETED, FAILED
    config_books_max = Column(Integer, nullable=False)
    config_authors_max = Column(Integer, nullable=False)
    config_subjects = Column(Text, nullable=False)
    books_fetched = Column(Integer, default=0)
    books_upserted = Column(Integer, default=0)
    authors_fetched = Column(Integer, default=0)
    authors_upserted = Column(Integer, default=0)
    error = Column(Text, nullable=True)


class IngestRunBook(Base):
    """Books touched by an ingestion run."""
    __tablename__ = 'ingest_run_books'

    run_id = Column(String(36), ForeignKey('ingest_runs.id', ondelete='CASCADE'), primary_key=True)
    isbn13 = Column(String(13), ForeignKey('catalog_books.isbn13', ondelete='CASCADE'), primary_key=True)


class IngestRunAuthor(Base):
    """Authors touched by an ingestion run."""
    __tablename__ = 'ingest_run_authors'

    run_id = Column(String(36), ForeignKey('ingest_runs.id', ondelete='CASCADE'), primary_key=True)
    author_key = Column(String(50), ForeignKey('catalog_authors.key', ondelete='CASCADE'), primary_key=True)


class IngestSettings(Base):
    """Ingestion settings overridden through the web API."""
    __tablename__ = 'ingest_settings'

    id = Column(Integer, primary_key=True)
    books_max = Column(Integer, nullable=True)
    authors_max = Column(Integer, nullable=True)
    subjects = Column(Text, nullable=True)  # comma separated
    batch_size = Column(Integer, nullable=True)
    fresh_days = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class IngestLog(Base):
    """Detailed logs for ingestion runs."""
    __tablename__ = 'ingest_log'

    id = Column(Integer, primary_key=True)
    level = Column(String(20), nullable=False)  # DEBUG, INFO, WARNING, ERROR
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    ingest_run_id = Column(String(50), index=True, nullable=True)  # Group logs by run
    created_at = Column(DateTime, default=utcnow, index=True)
