"""
Open Library API client for Catalog Ingest Service.

Documentation: https://openlibrary.org/developers/api

Three endpoint shapes are decoded here: subject search (search.json),
batch lookup by ISBN (api/books?jscmd=data) and author detail
(authors/{key}.json).
"""

import json
import threading
from typing import Optional, List, Dict, Any, Union
from urllib.parse import quote_plus

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator

from catalog_ingest.api.base import BaseClient, APIError
from catalog_ingest.api.ratelimit import Clock
from catalog_ingest.utils.logging import get_logger

logger = get_logger(__name__)

OPENLIBRARY_BASE_URL = "https://openlibrary.org"
DEFAULT_USER_AGENT = "BookAPI/1.0"

SEARCH_FIELDS = "key,title,author_name,author_key,isbn,first_publish_year,language"


class ProviderModel(BaseModel):
    """Base for decoded provider payloads; unknown fields are kept."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    _raw: Dict[str, Any] = PrivateAttr(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # Open Library sends explicit nulls for missing values
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]):
        """Decode a payload and keep the exact provider JSON for provenance."""
        model = cls.model_validate(payload)
        model._raw = payload
        return model

    @property
    def raw_json(self) -> str:
        """The provider payload this model was decoded from, as JSON."""
        if self._raw:
            return json.dumps(self._raw, ensure_ascii=False)
        return self.model_dump_json(by_alias=True, exclude_none=True)


class SearchDoc(ProviderModel):
    """A single search.json document."""
    key: str = ""
    title: str = ""
    author_names: List[str] = Field(default_factory=list, alias="author_name")
    author_keys: List[str] = Field(default_factory=list, alias="author_key")
    isbn: List[str] = Field(default_factory=list)
    first_publish_year: Optional[int] = None
    language: List[str] = Field(default_factory=list)


class SearchResponse(ProviderModel):
    """Response of search.json."""
    num_found: int = Field(default=0, alias="numFound")
    docs: List[SearchDoc] = Field(default_factory=list)


class Publisher(ProviderModel):
    name: str = ""


class Cover(ProviderModel):
    small: str = ""
    medium: str = ""
    large: str = ""


class AuthorRef(ProviderModel):
    url: str = ""
    name: str = ""


class SubjectRef(ProviderModel):
    name: str = ""
    url: str = ""


class BookDetails(ProviderModel):
    """A book record from api/books?jscmd=data."""
    title: str = ""
    subtitle: str = ""
    publishers: List[Publisher] = Field(default_factory=list)
    publish_date: str = ""
    cover: Cover = Field(default_factory=Cover)
    authors: List[AuthorRef] = Field(default_factory=list)
    subjects: List[SubjectRef] = Field(default_factory=list)
    number_of_pages: int = 0
    notes: str = ""


class StructuredText(ProviderModel):
    """Open Library's typed text value, e.g. {"type": "/type/text", "value": "..."}."""
    type: Optional[str] = None
    value: str = ""


# The bio is either a plain string or a StructuredText object
Bio = Union[str, StructuredText]


class AuthorDetails(ProviderModel):
    """An author record from authors/{key}.json."""
    name: str = ""
    personal_name: str = ""
    birth_date: str = ""
    bio: Optional[Bio] = None
    photos: List[int] = Field(default_factory=list)


class OpenLibraryClient(BaseClient):
    """
    Client for the Open Library API.

    All requests share a token-bucket rate limiter and carry a fixed
    User-Agent; transient failures are retried with exponential backoff.
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        requests_per_second: float = 1,
        max_retries: int = 3,
        base_url: str = OPENLIBRARY_BASE_URL,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize Open Library client.

        Args:
            user_agent: Client identifier sent with every request
            requests_per_second: Shared request rate (burst of one)
            max_retries: Retries for network errors, 429 and 5xx
            base_url: Open Library base URL
            clock: Clock used for rate limiting and backoff waits
        """
        super().__init__(
            base_url,
            timeout=15,
            max_retries=max_retries,
            requests_per_second=requests_per_second,
            user_agent=user_agent,
            clock=clock,
        )

    def raw_get(self, url: str, cancel: Optional[threading.Event] = None) -> bytes:
        """
        Fetch a URL and return the exact response body.

        Args:
            url: Absolute URL or endpoint relative to the base URL
            cancel: Cancellation token

        Returns:
            Response body bytes
        """
        response = self._request("GET", url, cancel=cancel)
        return response.content

    def _get_json(self, url: str, cancel: Optional[threading.Event] = None) -> Any:
        body = self.raw_get(url, cancel=cancel)
        try:
            return json.loads(body)
        except ValueError as e:
            raise APIError(f"Invalid JSON response from {url}: {str(e)}")

    def search_books(
        self,
        subject: str,
        limit: int,
        cancel: Optional[threading.Event] = None,
    ) -> SearchResponse:
        """
        Search books by subject.

        Documents are returned as-is; some carry no ISBN at all and some
        carry several.

        Args:
            subject: Subject to search for
            limit: Maximum number of documents
            cancel: Cancellation token

        Returns:
            SearchResponse
        """
        url = (
            f"{self.base_url}/search.json?q=subject:{quote_plus(subject)}"
            f"&fields={SEARCH_FIELDS}&limit={limit}"
        )
        payload = self._get_json(url, cancel=cancel)
        if not isinstance(payload, dict):
            raise APIError(f"Unexpected search response for subject {subject}")

        return SearchResponse.from_payload(payload)

    def get_books_by_isbn(
        self,
        isbns: List[str],
        cancel: Optional[threading.Event] = None,
    ) -> Dict[str, BookDetails]:
        """
        Hydrate a batch of ISBNs in a single request.

        Args:
            isbns: ISBNs to look up
            cancel: Cancellation token

        Returns:
            Mapping of ISBN to details, only for the ISBNs the provider knows
        """
        if not isbns:
            return {}

        bibkeys = ",".join(f"ISBN:{isbn}" for isbn in isbns)
        url = f"{self.base_url}/api/books?bibkeys={bibkeys}&jscmd=data&format=json"

        payload = self._get_json(url, cancel=cancel)
        if not isinstance(payload, dict):
            raise APIError("Unexpected books response")

        books = {}
        for bibkey, data in payload.items():
            isbn = bibkey[len("ISBN:"):] if bibkey.startswith("ISBN:") else bibkey
            books[isbn] = BookDetails.from_payload(data)

        logger.debug("Hydrated ISBN batch", requested=len(isbns), returned=len(books))
        return books

    def get_author(
        self,
        author_key: str,
        cancel: Optional[threading.Event] = None,
    ) -> AuthorDetails:
        """
        Get details for an author.

        Args:
            author_key: Author key, either "OL123A" or "/authors/OL123A"
            cancel: Cancellation token

        Returns:
            AuthorDetails
        """
        key = author_key
        if key.startswith("/authors/"):
            key = key[len("/authors/"):]

        payload = self._get_json(f"{self.base_url}/authors/{key}.json", cancel=cancel)
        if not isinstance(payload, dict):
            raise APIError(f"Unexpected author response for {key}")

        return AuthorDetails.from_payload(payload)
