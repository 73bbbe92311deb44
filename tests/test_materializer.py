"""
Tests for catalog and serving record materialization.
"""

import pytest

from catalog_ingest.api.openlibrary import AuthorDetails, BookDetails
from catalog_ingest.sync import materializer
from catalog_ingest.sync.models import BookRecord


class TestExtractYear:
    """Test the publish date year heuristic."""

    @pytest.mark.parametrize("date_str,expected", [
        ("March 5, 1999", "1999"),
        ("1999", "1999"),
        ("Jan 2001", "2001"),
        ("", ""),
        ("1999-03-05", ""),
        ("c1999", ""),
        ("March 5, 1999.", ""),
    ])
    def test_last_token_of_length_four(self, date_str, expected):
        assert materializer.extract_year(date_str) == expected

    def test_non_numeric_four_character_token_is_returned(self):
        # The heuristic only checks length; callers check for digits
        assert materializer.extract_year("Fall 19??") == "19??"


class TestExtractAuthorKeys:
    """Test author key extraction from profile URLs."""

    def test_full_and_relative_urls(self):
        details = BookDetails.from_payload({
            "authors": [
                {"url": "https://openlibrary.org/authors/OL1A/Frank_Herbert", "name": "Frank Herbert"},
                {"url": "/authors/OL2A", "name": "Someone"},
                {"name": "No URL"},
                {"url": "https://openlibrary.org/works/OL1W"},
            ],
        })

        assert materializer.extract_author_keys(details) == ["OL1A", "OL2A"]


class TestBookRecord:
    """Test catalog book records."""

    def test_maps_provider_fields(self):
        details = BookDetails.from_payload({
            "title": "Dune",
            "subtitle": "A novel",
            "notes": "First edition.",
            "publish_date": "1965",
            "publishers": [{"name": "Chilton"}, {"name": "Ace"}],
            "cover": {"small": "s.jpg", "medium": "m.jpg", "large": "l.jpg"},
            "number_of_pages": 412,
        })

        book = materializer.to_book_record("9780441013593", details)

        assert book.isbn13 == "9780441013593"
        assert book.title == "Dune"
        assert book.subtitle == "A novel"
        assert book.description == "First edition."
        assert book.publisher == "Chilton, Ace"
        assert book.cover_url == "l.jpg"
        assert book.page_count == 412
        assert book.language == ""

    def test_missing_fields_are_empty(self):
        book = materializer.to_book_record("1", BookDetails.from_payload({"title": "Bare"}))

        assert book.publisher == ""
        assert book.cover_url == ""
        assert book.page_count == 0


class TestServingBook:
    """Test serving row materialization."""

    def test_subject_becomes_genre(self):
        book = BookRecord(isbn13="1", title="T", publisher="P", published_date="May 1, 2010", page_count=10)

        serving = materializer.to_serving_book(book, "science")

        assert serving.isbn == "1"
        assert serving.genre == "science"
        assert serving.publication_year == 2010
        assert serving.page_count == 10

    def test_defaults_for_missing_values(self):
        book = BookRecord(isbn13="1", title="T")

        serving = materializer.to_serving_book(book, None)

        assert serving.genre == "Unknown"
        assert serving.publisher == "Unknown"
        assert serving.publication_year is None
        assert serving.page_count is None
        assert serving.cover_url is None

    def test_unparseable_year_is_left_empty(self):
        book = BookRecord(isbn13="1", title="T", published_date="Fall 19??")

        assert materializer.to_serving_book(book, "x").publication_year is None


class TestAuthorRecord:
    """Test catalog author records."""

    def test_plain_bio(self):
        details = AuthorDetails.from_payload({"name": "Ursula", "birth_date": "1929", "bio": "Wrote."})

        author = materializer.to_author_record("OL1A", details)

        assert author.key == "OL1A"
        assert author.name == "Ursula"
        assert author.birth_date == "1929"
        assert author.bio == "Wrote."

    def test_structured_bio(self):
        details = AuthorDetails.from_payload({"name": "U", "bio": {"type": "/type/text", "value": "Wrote."}})

        assert materializer.to_author_record("OL1A", details).bio == "Wrote."

    def test_missing_bio(self):
        details = AuthorDetails.from_payload({"name": "U"})

        assert materializer.to_author_record("OL1A", details).bio == ""
