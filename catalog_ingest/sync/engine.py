"""
Main ingestion engine for Catalog Ingest Service.

Incrementally fills the local catalog from Open Library until the
configured book and author targets are met.
"""

import threading
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Callable, Protocol

from catalog_ingest.api.base import APIError
from catalog_ingest.api.openlibrary import AuthorDetails, BookDetails, SearchDoc, SearchResponse
from catalog_ingest.api.ratelimit import Cancelled
from catalog_ingest.config import IngestConfig
from catalog_ingest.db.models import utcnow
from catalog_ingest.sync import materializer
from catalog_ingest.sync.models import AuthorRecord, BookRecord, Run, RunStatus, ServingBook
from catalog_ingest.utils.logging import get_logger, RunLogger

logger = get_logger(__name__)

MAX_SEARCH_LIMIT = 100


class IngestError(Exception):
    """Raised when a run cannot even be recorded."""


class OpenLibrary(Protocol):
    def search_books(self, subject: str, limit: int, cancel: Optional[threading.Event] = None) -> SearchResponse: ...
    def get_books_by_isbn(self, isbns: List[str], cancel: Optional[threading.Event] = None) -> Dict[str, BookDetails]: ...
    def get_author(self, author_key: str, cancel: Optional[threading.Event] = None) -> AuthorDetails: ...


class CatalogStore(Protocol):
    def upsert_book(self, book: BookRecord, raw_json: str) -> None: ...
    def upsert_author(self, author: AuthorRecord, raw_json: str) -> None: ...
    def upsert_serving_book(self, book: ServingBook) -> None: ...
    def get_total_books(self) -> int: ...
    def get_total_authors(self) -> int: ...
    def get_book_updated_at(self, isbn13: str) -> Optional[datetime]: ...
    def get_author_updated_at(self, key: str) -> Optional[datetime]: ...


class Ledger(Protocol):
    def create_run(self, run: Run) -> str: ...
    def update_run(self, run: Run) -> None: ...
    def link_book_to_run(self, run_id: str, isbn13: str) -> None: ...
    def link_author_to_run(self, run_id: str, author_key: str) -> None: ...


def pick_isbn(doc: SearchDoc) -> Optional[str]:
    """First ISBN of a search document, preferring a 13-digit one."""
    if not doc.isbn:
        return None
    for isbn in doc.isbn:
        if len(isbn) == 13:
            return isbn
    return doc.isbn[0]


def search_limit(remaining_books: int) -> int:
    """Over-fetch to make up for documents without an ISBN."""
    if remaining_books > 0:
        return min(remaining_books, MAX_SEARCH_LIMIT) * 2
    return MAX_SEARCH_LIMIT


class IngestService:
    """
    Orchestrates an ingestion run.

    Responsibilities:
    - Work out how many books and authors are still missing
    - Discover ISBNs subject by subject, skipping fresh and repeated ones
    - Hydrate ISBNs in batches and write catalog and serving rows
    - Backfill the authors referenced by the new books
    - Record the run and everything it touched in the run ledger
    """

    def __init__(
        self,
        client: OpenLibrary,
        catalog: CatalogStore,
        ledger: Ledger,
        config: IngestConfig,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.client = client
        self.catalog = catalog
        self.ledger = ledger
        self.config = config
        self.now = now or utcnow

    def _is_fresh(self, updated_at: Optional[datetime]) -> bool:
        if updated_at is None:
            return False
        return self.now() - updated_at < timedelta(days=self.config.fresh_days)

    def run(self, cancel: Optional[threading.Event] = None) -> Run:
        """
        Run one ingestion.

        Args:
            cancel: Cancellation token honoured at every rate-limit and
                backoff wait

        Returns:
            The finalized Run

        Raises:
            IngestError: If the run record cannot be created
            Exception: Any fatal error, re-raised after the run is marked FAILED
        """
        run = Run(
            config_books_max=self.config.books_max,
            config_authors_max=self.config.authors_max,
            config_subjects=",".join(self.config.subjects),
            started_at=self.now(),
        )

        try:
            run.id = self.ledger.create_run(run)
        except Exception as e:
            logger.error("Failed to create ingest run", error=str(e))
            raise IngestError(f"create run: {e}") from e

        run_logger = RunLogger(run.id)
        run_logger.info(
            "Starting ingest run",
            books_max=run.config_books_max,
            authors_max=run.config_authors_max,
            subjects=run.config_subjects,
        )

        try:
            self._execute(run, run_logger, cancel)
        except Cancelled as e:
            run.error = run.error or f"ingestion cancelled: {e}"
            raise
        except Exception as e:
            run.error = run.error or str(e) or e.__class__.__name__
            raise
        finally:
            self._finalize(run, run_logger)

        return run

    def _finalize(self, run: Run, run_logger: RunLogger) -> None:
        run.finished_at = self.now()
        run.status = RunStatus.FAILED if run.error else RunStatus.COMPLETED

        try:
            self.ledger.update_run(run)
        except Exception as e:
            run_logger.error("Failed to update ingest run", error=str(e))

        log = run_logger.error if run.error else run_logger.info
        log(
            "Ingest run finished",
            status=run.status,
            books_fetched=run.books_fetched,
            books_upserted=run.books_upserted,
            authors_fetched=run.authors_fetched,
            authors_upserted=run.authors_upserted,
            error=run.error or None,
        )

    def _execute(self, run: Run, run_logger: RunLogger, cancel: Optional[threading.Event]) -> None:
        current_books = self.catalog.get_total_books()
        current_authors = self.catalog.get_total_authors()

        needed_books = self.config.books_max - current_books
        needed_authors = self.config.authors_max - current_authors

        if needed_books <= 0 and needed_authors <= 0:
            run_logger.info(
                "Ingestion targets already met, skipping",
                books=current_books,
                authors=current_authors,
            )
            return

        run_logger.info("Ingestion needed", needed_books=needed_books, needed_authors=needed_authors)

        # Both sets live only for this run
        processed_isbns = set()
        author_keys: Dict[str, None] = {}

        for subject in self.config.subjects:
            if run.books_upserted >= needed_books and run.authors_upserted >= needed_authors:
                break

            limit = search_limit(needed_books - run.books_upserted)
            try:
                result = self.client.search_books(subject, limit, cancel=cancel)
            except (APIError, ValueError) as e:
                run.error = f"search failed for {subject}: {e}"
                run_logger.error("Subject search failed", subject=subject, error=str(e))
                raise

            run_logger.info("Searched subject", subject=subject, limit=limit, docs=len(result.docs))

            batch: List[str] = []
            for doc in result.docs:
                isbn = pick_isbn(doc)
                if isbn is None:
                    continue

                if isbn in processed_isbns:
                    continue

                try:
                    updated_at = self.catalog.get_book_updated_at(isbn)
                except Exception as e:
                    run_logger.warning("Failed to check book freshness", isbn=isbn, error=str(e))
                    updated_at = None

                if self._is_fresh(updated_at):
                    continue

                processed_isbns.add(isbn)
                batch.append(isbn)

                if len(batch) >= self.config.batch_size:
                    self._hydrate_batch(run, run_logger, batch, subject, author_keys, cancel)
                    batch = []
                    if needed_books > 0 and run.books_upserted >= needed_books:
                        break

            if batch:
                self._hydrate_batch(run, run_logger, batch, subject, author_keys, cancel)

        self._backfill_authors(run, run_logger, list(author_keys), needed_authors, cancel)

    def _hydrate_batch(
        self,
        run: Run,
        run_logger: RunLogger,
        isbns: List[str],
        subject: str,
        author_keys: Dict[str, None],
        cancel: Optional[threading.Event],
    ) -> None:
        """
        Fetch details for a batch of ISBNs and write them.

        A failed batch request or a failed write for one book is logged and
        skipped; cancellation propagates.
        """
        try:
            batch = self.client.get_books_by_isbn(isbns, cancel=cancel)
        except (APIError, ValueError) as e:
            run_logger.error("Failed to hydrate batch", size=len(isbns), error=str(e))
            return

        run.books_fetched += len(batch)

        for isbn, details in batch.items():
            book = materializer.to_book_record(isbn, details)

            try:
                self.catalog.upsert_book(book, details.raw_json)
            except Exception as e:
                run_logger.error("Failed to upsert book to catalog", isbn=isbn, error=str(e))
                continue

            try:
                self.catalog.upsert_serving_book(materializer.to_serving_book(book, subject))
            except Exception as e:
                run_logger.error("Failed to materialize book", isbn=isbn, error=str(e))
                continue

            run.books_upserted += 1
            self._link(run_logger, self.ledger.link_book_to_run, run.id, isbn)

            for key in materializer.extract_author_keys(details):
                author_keys.setdefault(key, None)

        run_logger.info(
            "Hydrated batch",
            subject=subject,
            requested=len(isbns),
            returned=len(batch),
            books_upserted=run.books_upserted,
        )

    def _backfill_authors(
        self,
        run: Run,
        run_logger: RunLogger,
        author_keys: List[str],
        needed_authors: int,
        cancel: Optional[threading.Event],
    ) -> None:
        for key in author_keys:
            if needed_authors > 0 and run.authors_upserted >= needed_authors:
                break

            try:
                updated_at = self.catalog.get_author_updated_at(key)
            except Exception as e:
                run_logger.warning("Failed to check author freshness", author_key=key, error=str(e))
                updated_at = None

            if self._is_fresh(updated_at):
                continue

            try:
                details = self.client.get_author(key, cancel=cancel)
            except (APIError, ValueError) as e:
                run_logger.error("Failed to fetch author", author_key=key, error=str(e))
                continue
            run.authors_fetched += 1

            try:
                self.catalog.upsert_author(materializer.to_author_record(key, details), details.raw_json)
            except Exception as e:
                run_logger.error("Failed to upsert author", author_key=key, error=str(e))
                continue

            run.authors_upserted += 1
            self._link(run_logger, self.ledger.link_author_to_run, run.id, key)

    @staticmethod
    def _link(run_logger: RunLogger, link: Callable[[str, str], None], run_id: str, key: str) -> None:
        # Links are best-effort and never affect the run's outcome
        try:
            link(run_id, key)
        except Exception as e:
            run_logger.warning("Failed to link entity to run", run_id=run_id, key=key, error=str(e))


def create_ingest_service_from_config(config: Optional[IngestConfig] = None) -> IngestService:
    """
    Create an ingest service wired to Open Library and the database.

    Args:
        config: Configuration to use; loaded from database and environment if omitted

    Returns:
        IngestService
    """
    from catalog_ingest.api.openlibrary import OpenLibraryClient
    from catalog_ingest.config import ConfigManager
    from catalog_ingest.db.catalog import CatalogRepository
    from catalog_ingest.db.database import get_db_session
    from catalog_ingest.db.ledger import RunLedger

    if config is None:
        with get_db_session() as db_session:
            config = ConfigManager(db_session=db_session).get_config()

    client = OpenLibraryClient(
        user_agent=config.user_agent,
        requests_per_second=config.rps,
        max_retries=config.max_retries,
    )

    return IngestService(
        client=client,
        catalog=CatalogRepository(),
        ledger=RunLedger(),
        config=config,
    )
