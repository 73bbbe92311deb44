"""
Run ledger: one audit row per ingestion run plus the entities it touched.
"""

from typing import Optional, List

from catalog_ingest.db.catalog import SessionFactory
from catalog_ingest.db.database import get_db_session, upsert_insert
from catalog_ingest.db.models import IngestRun, IngestRunAuthor, IngestRunBook, new_run_id
from catalog_ingest.sync.models import Run, RunLinks


class RunLedger:
    """SQLAlchemy-backed run ledger."""

    def __init__(self, session_factory: SessionFactory = get_db_session):
        self.session_factory = session_factory

    def create_run(self, run: Run) -> str:
        """
        Persist a new run.

        Returns:
            The generated run ID
        """
        run_id = new_run_id()
        with self.session_factory() as session:
            session.add(IngestRun(
                id=run_id,
                started_at=run.started_at,
                status=run.status,
                config_books_max=run.config_books_max,
                config_authors_max=run.config_authors_max,
                config_subjects=run.config_subjects,
            ))
        return run_id

    def update_run(self, run: Run) -> None:
        """Write the run's status, counters and error."""
        with self.session_factory() as session:
            row = session.get(IngestRun, run.id)
            if row is None:
                raise LookupError(f"ingest run not found: {run.id}")

            row.finished_at = run.finished_at
            row.status = run.status
            row.books_fetched = run.books_fetched
            row.books_upserted = run.books_upserted
            row.authors_fetched = run.authors_fetched
            row.authors_upserted = run.authors_upserted
            row.error = run.error or None

    def link_book_to_run(self, run_id: str, isbn13: str) -> None:
        """Record that a run wrote a book; repeating a link is a no-op."""
        with self.session_factory() as session:
            session.execute(
                upsert_insert(session, IngestRunBook)
                .values(run_id=run_id, isbn13=isbn13)
                .on_conflict_do_nothing(index_elements=["run_id", "isbn13"])
            )

    def link_author_to_run(self, run_id: str, author_key: str) -> None:
        """Record that a run wrote an author; repeating a link is a no-op."""
        with self.session_factory() as session:
            session.execute(
                upsert_insert(session, IngestRunAuthor)
                .values(run_id=run_id, author_key=author_key)
                .on_conflict_do_nothing(index_elements=["run_id", "author_key"])
            )

    def get_run(self, run_id: str) -> Optional[Run]:
        with self.session_factory() as session:
            row = session.get(IngestRun, run_id)
            return _to_run(row) if row else None

    def list_runs(self, limit: int = 20) -> List[Run]:
        """Most recent runs first."""
        with self.session_factory() as session:
            rows = session.query(IngestRun).order_by(
                IngestRun.started_at.desc()
            ).limit(limit).all()
            return [_to_run(row) for row in rows]

    def get_run_links(self, run_id: str) -> RunLinks:
        with self.session_factory() as session:
            isbns = session.query(IngestRunBook.isbn13).filter(
                IngestRunBook.run_id == run_id
            ).order_by(IngestRunBook.isbn13).all()
            author_keys = session.query(IngestRunAuthor.author_key).filter(
                IngestRunAuthor.run_id == run_id
            ).order_by(IngestRunAuthor.author_key).all()

            return RunLinks(
                isbns=[isbn for (isbn,) in isbns],
                author_keys=[key for (key,) in author_keys],
            )


def _to_run(row: IngestRun) -> Run:
    return Run(
        id=row.id,
        status=row.status,
        started_at=row.started_at,
        finished_at=row.finished_at,
        config_books_max=row.config_books_max,
        config_authors_max=row.config_authors_max,
        config_subjects=row.config_subjects,
        books_fetched=row.books_fetched or 0,
        books_upserted=row.books_upserted or 0,
        authors_fetched=row.authors_fetched or 0,
        authors_upserted=row.authors_upserted or 0,
        error=row.error or "",
    )
