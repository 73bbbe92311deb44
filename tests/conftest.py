"""Pytest fixtures for catalog ingest tests."""

import threading
from datetime import datetime
from typing import Dict, List, Optional

import pytest

from catalog_ingest.api.base import APIError
from catalog_ingest.api.openlibrary import AuthorDetails, BookDetails, SearchResponse
from catalog_ingest.api.ratelimit import Cancelled
from catalog_ingest.config import IngestConfig
from catalog_ingest.db import database
from catalog_ingest.sync.models import AuthorRecord, BookRecord, Run, ServingBook


class FakeClock:
    """Clock whose time only moves when something sleeps on it."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float, cancel: Optional[threading.Event] = None) -> None:
        if cancel is not None and cancel.is_set():
            raise Cancelled()
        self.sleeps.append(seconds)
        self.now += seconds


class FakeOpenLibrary:
    """In-memory Open Library that records every call."""

    def __init__(
        self,
        searches: Optional[Dict[str, list]] = None,
        books: Optional[Dict[str, dict]] = None,
        authors: Optional[Dict[str, dict]] = None,
    ):
        self.searches = searches or {}
        self.books = books or {}
        self.authors = authors or {}
        self.search_errors: Dict[str, Exception] = {}
        self.author_errors: Dict[str, Exception] = {}
        self.hydrate_error: Optional[Exception] = None

        self.search_calls: List[tuple] = []
        self.hydrate_calls: List[List[str]] = []
        self.author_calls: List[str] = []

    def search_books(self, subject, limit, cancel=None):
        self.search_calls.append((subject, limit))
        if subject in self.search_errors:
            raise self.search_errors[subject]
        docs = [{"isbn": isbns} for isbns in self.searches.get(subject, [])]
        return SearchResponse.from_payload({"numFound": len(docs), "docs": docs})

    def get_books_by_isbn(self, isbns, cancel=None):
        self.hydrate_calls.append(list(isbns))
        if self.hydrate_error is not None:
            raise self.hydrate_error
        return {
            isbn: BookDetails.from_payload(self.books[isbn])
            for isbn in isbns
            if isbn in self.books
        }

    def get_author(self, author_key, cancel=None):
        self.author_calls.append(author_key)
        if author_key in self.author_errors:
            raise self.author_errors[author_key]
        if author_key not in self.authors:
            raise APIError("not found", status_code=404)
        return AuthorDetails.from_payload(self.authors[author_key])

    @property
    def hydrated_isbns(self) -> List[str]:
        return [isbn for call in self.hydrate_calls for isbn in call]


class FakeCatalog:
    """In-memory catalog store with per-key failure injection."""

    def __init__(self, total_books: int = 0, total_authors: int = 0):
        self.total_books = total_books
        self.total_authors = total_authors
        self.book_updated_at: Dict[str, datetime] = {}
        self.author_updated_at: Dict[str, datetime] = {}
        self.failing_books = set()
        self.failing_serving = set()
        self.failing_authors = set()
        self.count_error: Optional[Exception] = None

        self.books: Dict[str, BookRecord] = {}
        self.book_sources: Dict[str, str] = {}
        self.serving: Dict[str, ServingBook] = {}
        self.authors: Dict[str, AuthorRecord] = {}
        self.author_sources: Dict[str, str] = {}

    def upsert_book(self, book, raw_json):
        if book.isbn13 in self.failing_books:
            raise RuntimeError(f"db error for {book.isbn13}")
        self.books[book.isbn13] = book
        self.book_sources[book.isbn13] = raw_json

    def upsert_serving_book(self, book):
        if book.isbn in self.failing_serving:
            raise RuntimeError(f"db error for {book.isbn}")
        self.serving[book.isbn] = book

    def upsert_author(self, author, raw_json):
        if author.key in self.failing_authors:
            raise RuntimeError(f"db error for {author.key}")
        self.authors[author.key] = author
        self.author_sources[author.key] = raw_json

    def get_total_books(self):
        if self.count_error is not None:
            raise self.count_error
        return self.total_books

    def get_total_authors(self):
        return self.total_authors

    def get_book_updated_at(self, isbn13):
        return self.book_updated_at.get(isbn13)

    def get_author_updated_at(self, key):
        return self.author_updated_at.get(key)


class FakeLedger:
    """In-memory run ledger keeping a snapshot of every update."""

    def __init__(self):
        self.created: List[Run] = []
        self.updates: List[dict] = []
        self.book_links: List[tuple] = []
        self.author_links: List[tuple] = []
        self.create_error: Optional[Exception] = None
        self.link_error: Optional[Exception] = None

    def create_run(self, run):
        if self.create_error is not None:
            raise self.create_error
        self.created.append(run)
        return f"run-{len(self.created)}"

    def update_run(self, run):
        self.updates.append(dict(vars(run)))

    def link_book_to_run(self, run_id, isbn13):
        if self.link_error is not None:
            raise self.link_error
        self.book_links.append((run_id, isbn13))

    def link_author_to_run(self, run_id, author_key):
        if self.link_error is not None:
            raise self.link_error
        self.author_links.append((run_id, author_key))


def book_payload(title: str, author_keys=(), publish_date: str = "", publishers=()) -> dict:
    return {
        "title": title,
        "publish_date": publish_date,
        "publishers": [{"name": p} for p in publishers],
        "authors": [{"url": f"https://openlibrary.org/authors/{k}/Name", "name": k} for k in author_keys],
        "cover": {"small": "s.jpg", "medium": "m.jpg", "large": f"https://covers.example/{title}-L.jpg"},
        "number_of_pages": 200,
    }


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_client():
    return FakeOpenLibrary()


@pytest.fixture
def fake_catalog():
    return FakeCatalog()


@pytest.fixture
def fake_ledger():
    return FakeLedger()


@pytest.fixture
def ingest_config():
    return IngestConfig(
        books_max=10,
        authors_max=5,
        subjects=["test"],
        batch_size=5,
        fresh_days=7,
    )


@pytest.fixture
def db():
    """Fresh in-memory database behind the module-level session factory."""
    database.init_db("sqlite://")
    yield database
    database.close_db()
