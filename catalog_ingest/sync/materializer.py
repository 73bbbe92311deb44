"""
Transforms hydrated Open Library records into catalog and serving records.

Pure functions only; nothing here touches the network or the database.
"""

from typing import List, Optional

from catalog_ingest.api.openlibrary import AuthorDetails, Bio, BookDetails, Publisher, StructuredText
from catalog_ingest.sync.models import AuthorRecord, BookRecord, ServingBook

UNKNOWN = "Unknown"


def format_publishers(publishers: List[Publisher]) -> str:
    return ", ".join(p.name for p in publishers)


def format_bio(bio: Optional[Bio]) -> str:
    """Flatten either form of the bio field to plain text."""
    if bio is None:
        return ""
    if isinstance(bio, StructuredText):
        return bio.value
    return bio


def extract_year(date_str: str) -> str:
    """
    Take the last whitespace-delimited token of a publish date if it is
    exactly four characters long.

    "March 5, 1999" gives "1999"; "1999-03-05" and "c1999" give "".
    """
    parts = date_str.split()
    if parts and len(parts[-1]) == 4:
        return parts[-1]
    return ""


def extract_author_keys(details: BookDetails) -> List[str]:
    """
    Author keys from the author profile URLs, e.g. "/authors/OL123A" or
    "https://openlibrary.org/authors/OL123A/Name" both give "OL123A".
    """
    keys = []
    for author in details.authors:
        if not author.url:
            continue
        parts = author.url.split("/")
        for i, part in enumerate(parts):
            if part == "authors" and i + 1 < len(parts):
                keys.append(parts[i + 1])
                break
    return keys


def to_book_record(isbn: str, details: BookDetails) -> BookRecord:
    return BookRecord(
        isbn13=isbn,
        title=details.title,
        subtitle=details.subtitle,
        description=details.notes,
        cover_url=details.cover.large,
        published_date=details.publish_date,
        publisher=format_publishers(details.publishers),
        language="",
        page_count=details.number_of_pages,
    )


def to_serving_book(book: BookRecord, subject: Optional[str]) -> ServingBook:
    """
    Build the serving row for a catalog book discovered under a subject.

    Args:
        book: Catalog book
        subject: Subject the book was found under, used as its genre

    Returns:
        ServingBook
    """
    publication_year = None
    year = extract_year(book.published_date) if book.published_date else ""
    if year.isdigit():
        publication_year = int(year)

    return ServingBook(
        isbn=book.isbn13,
        title=book.title,
        subtitle=book.subtitle,
        genre=subject or UNKNOWN,
        publisher=book.publisher or UNKNOWN,
        description=book.description,
        published_date=book.published_date,
        publication_year=publication_year,
        page_count=book.page_count if book.page_count > 0 else None,
        language=book.language,
        cover_url=book.cover_url or None,
    )


def to_author_record(key: str, details: AuthorDetails) -> AuthorRecord:
    return AuthorRecord(
        key=key,
        name=details.name,
        birth_date=details.birth_date,
        bio=format_bio(details.bio),
    )
