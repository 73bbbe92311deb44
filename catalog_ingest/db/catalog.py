"""
Catalog store: canonical books and authors, their provider payloads and
the denormalized serving rows.
"""

import json
from datetime import datetime
from typing import Optional, List, Sequence, Tuple, Callable, ContextManager

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from catalog_ingest.db.database import get_db_session, upsert_insert
from catalog_ingest.db.models import Book, CatalogAuthor, CatalogBook, CatalogSource, utcnow
from catalog_ingest.sync.models import AuthorRecord, BookRecord, CatalogQuery, ServingBook

PROVIDER_OPEN_LIBRARY = "OPEN_LIBRARY"
ENTITY_BOOK = "BOOK"
ENTITY_AUTHOR = "AUTHOR"

SessionFactory = Callable[[], ContextManager[Session]]


def _upsert(session: Session, model, values: dict, key_columns: Sequence[str], insert_only: Sequence[str] = ()) -> None:
    """Insert a row or overwrite every non-key column of the existing one in a single statement."""
    stmt = upsert_insert(session, model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(key_columns),
        set_={
            name: stmt.excluded[name]
            for name in values
            if name not in key_columns and name not in insert_only
        },
    )
    session.execute(stmt)


class CatalogRepository:
    """
    SQLAlchemy-backed catalog store.

    Upserts are keyed by ISBN-13 / author key and always overwrite the
    descriptive fields and bump updated_at. Each is one INSERT ... ON CONFLICT
    statement, so overlapping runs writing the same key end with the last
    writer's values.
    """

    def __init__(self, session_factory: SessionFactory = get_db_session):
        self.session_factory = session_factory

    def _upsert_source(self, session: Session, entity_type: str, entity_key: str, raw_json: str) -> None:
        _upsert(
            session,
            CatalogSource,
            {
                "entity_type": entity_type,
                "entity_key": entity_key,
                "provider": PROVIDER_OPEN_LIBRARY,
                "raw_json": json.loads(raw_json) if raw_json else {},
                "fetched_at": utcnow(),
            },
            key_columns=("entity_type", "entity_key", "provider"),
        )

    def upsert_book(self, book: BookRecord, raw_json: str) -> None:
        """Write a catalog book and its provider payload in one transaction."""
        with self.session_factory() as session:
            _upsert(
                session,
                CatalogBook,
                {
                    "isbn13": book.isbn13,
                    "title": book.title,
                    "subtitle": book.subtitle,
                    "description": book.description,
                    "cover_url": book.cover_url,
                    "published_date": book.published_date,
                    "publisher": book.publisher,
                    "language": book.language,
                    "page_count": book.page_count,
                    "updated_at": utcnow(),
                },
                key_columns=("isbn13",),
            )
            self._upsert_source(session, ENTITY_BOOK, book.isbn13, raw_json)

    def upsert_author(self, author: AuthorRecord, raw_json: str) -> None:
        """Write a catalog author and its provider payload in one transaction."""
        with self.session_factory() as session:
            _upsert(
                session,
                CatalogAuthor,
                {
                    "key": author.key,
                    "name": author.name,
                    "birth_date": author.birth_date,
                    "bio": author.bio,
                    "updated_at": utcnow(),
                },
                key_columns=("key",),
            )
            self._upsert_source(session, ENTITY_AUTHOR, author.key, raw_json)

    def upsert_serving_book(self, book: ServingBook) -> None:
        """Write the denormalized serving row for a book; created_at is kept on update."""
        now = utcnow()
        with self.session_factory() as session:
            _upsert(
                session,
                Book,
                {
                    "isbn": book.isbn,
                    "title": book.title,
                    "subtitle": book.subtitle,
                    "genre": book.genre,
                    "publisher": book.publisher,
                    "description": book.description,
                    "published_date": book.published_date,
                    "publication_year": book.publication_year,
                    "page_count": book.page_count,
                    "language": book.language,
                    "cover_url": book.cover_url,
                    "created_at": now,
                    "updated_at": now,
                },
                key_columns=("isbn",),
                insert_only=("created_at",),
            )

    def get_total_books(self) -> int:
        with self.session_factory() as session:
            return session.query(func.count(CatalogBook.isbn13)).scalar() or 0

    def get_total_authors(self) -> int:
        with self.session_factory() as session:
            return session.query(func.count(CatalogAuthor.key)).scalar() or 0

    def get_book_updated_at(self, isbn13: str) -> Optional[datetime]:
        """Last update of a catalog book, None if it has never been stored."""
        with self.session_factory() as session:
            return session.query(CatalogBook.updated_at).filter(
                CatalogBook.isbn13 == isbn13
            ).scalar()

    def get_author_updated_at(self, key: str) -> Optional[datetime]:
        """Last update of a catalog author, None if it has never been stored."""
        with self.session_factory() as session:
            return session.query(CatalogAuthor.updated_at).filter(
                CatalogAuthor.key == key
            ).scalar()

    def search(self, query: CatalogQuery) -> Tuple[List[BookRecord], int]:
        """
        Search catalog books.

        Args:
            query: Filters and paging

        Returns:
            Tuple of (page of books ordered by title, total matches)
        """
        with self.session_factory() as session:
            q = session.query(CatalogBook)

            if query.publisher:
                q = q.filter(CatalogBook.publisher.ilike(f"%{query.publisher}%"))

            if query.language:
                q = q.filter(CatalogBook.language == query.language)

            if query.q:
                pattern = f"%{query.q}%"
                q = q.filter(or_(
                    CatalogBook.title.ilike(pattern),
                    CatalogBook.subtitle.ilike(pattern),
                ))

            total = q.count()
            rows = q.order_by(CatalogBook.title.asc()).limit(query.limit).offset(query.offset).all()

            return [_to_record(row) for row in rows], total

    def get_by_isbn(self, isbn13: str) -> Optional[BookRecord]:
        with self.session_factory() as session:
            row = session.get(CatalogBook, isbn13)
            return _to_record(row) if row else None

    def get_source(self, entity_type: str, entity_key: str) -> Optional[dict]:
        """Archived provider payload for an entity."""
        with self.session_factory() as session:
            source = session.query(CatalogSource).filter(
                CatalogSource.entity_type == entity_type,
                CatalogSource.entity_key == entity_key,
                CatalogSource.provider == PROVIDER_OPEN_LIBRARY,
            ).first()
            return source.raw_json if source else None


def _to_record(row: CatalogBook) -> BookRecord:
    return BookRecord(
        isbn13=row.isbn13,
        title=row.title,
        subtitle=row.subtitle or "",
        description=row.description or "",
        cover_url=row.cover_url or "",
        published_date=row.published_date or "",
        publisher=row.publisher or "",
        language=row.language or "",
        page_count=row.page_count or 0,
        updated_at=row.updated_at,
    )
