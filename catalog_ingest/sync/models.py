"""
Data models for ingestion runs.
"""

from dataclasses import dataclass, field
from typing import Optional, List
from datetime import datetime

from catalog_ingest.db.models import utcnow


class RunStatus:
    """Lifecycle of an ingestion run: RUNNING, then COMPLETED or FAILED."""
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class Run:
    """A single ingestion run, owned by the service while it executes."""
    config_books_max: int
    config_authors_max: int
    config_subjects: str
    id: Optional[str] = None
    status: str = RunStatus.RUNNING
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    # Counters
    books_fetched: int = 0
    books_upserted: int = 0
    authors_fetched: int = 0
    authors_upserted: int = 0

    error: str = ""


@dataclass
class BookRecord:
    """Canonical catalog book."""
    isbn13: str
    title: str
    subtitle: str = ""
    description: str = ""
    cover_url: str = ""
    published_date: str = ""
    publisher: str = ""
    language: str = ""
    page_count: int = 0
    updated_at: Optional[datetime] = None


@dataclass
class AuthorRecord:
    """Canonical catalog author."""
    key: str
    name: str
    birth_date: str = ""
    bio: str = ""
    updated_at: Optional[datetime] = None


@dataclass
class ServingBook:
    """Denormalized book row for the serving path."""
    isbn: str
    title: str
    subtitle: str
    genre: str
    publisher: str
    description: str
    published_date: str
    publication_year: Optional[int]
    page_count: Optional[int]
    language: str
    cover_url: Optional[str]


@dataclass
class CatalogQuery:
    """Filters and paging for catalog searches."""
    q: str = ""
    publisher: str = ""
    language: str = ""
    limit: int = 20
    offset: int = 0


@dataclass
class RunLinks:
    """Entities a run touched."""
    isbns: List[str] = field(default_factory=list)
    author_keys: List[str] = field(default_factory=list)
