"""
Base API client class for Catalog Ingest Service.
"""

import threading
from typing import Optional, Dict, Any
from dataclasses import dataclass
import requests
from requests.adapters import HTTPAdapter
from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from catalog_ingest.api.ratelimit import Clock, RateLimiter
from catalog_ingest.utils.logging import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset([429])


@dataclass
class APIError(Exception):
    """Custom exception for API errors."""
    message: str
    status_code: Optional[int] = None
    response_data: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        if self.status_code:
            return f"API Error {self.status_code}: {self.message}"
        return f"API Error: {self.message}"

    @property
    def retryable(self) -> bool:
        """Network errors, 429 and 5xx are worth another attempt."""
        if self.status_code is None:
            return True
        return self.status_code in RETRYABLE_STATUS_CODES or self.status_code >= 500


class RetryExhaustedError(APIError):
    """Raised when every retry of a retryable failure has been used up."""

    def __init__(self, retries: int, last_error: APIError):
        super().__init__(
            message=f"after {retries} retries: {last_error}",
            status_code=last_error.status_code,
            response_data=last_error.response_data,
        )
        self.retries = retries
        self.last_error = last_error

    def __str__(self) -> str:
        return self.message

    @property
    def retryable(self) -> bool:
        return False


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, APIError) and error.retryable


def _log_retry(url: str, retry_state: RetryCallState) -> None:
    logger.debug(
        "Retrying request",
        url=url,
        attempt=retry_state.attempt_number,
        backoff_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
    )


class BaseClient:
    """
    Base class for API clients with common functionality.

    Requests share one rate limiter and are retried with exponential
    backoff (1s, 2s, 4s, ...) on network errors, 429 and 5xx responses.
    Both waits honour the caller's cancellation token.
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 30,
        max_retries: int = 3,
        requests_per_second: float = 1,
        user_agent: Optional[str] = None,
        clock: Optional[Clock] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.clock = clock or Clock()
        self.limiter = RateLimiter(requests_per_second, clock=self.clock)

        self.session = requests.Session()

        # Retries are driven by _request so they can be cancelled
        adapter = HTTPAdapter(max_retries=0)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        if user_agent:
            self.session.headers.update({"User-Agent": user_agent})

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from endpoint."""
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}{endpoint}"

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Send a single request and map failures to APIError.

        Raises:
            APIError: On network errors or non-2xx responses
        """
        kwargs.setdefault("timeout", self.timeout)

        try:
            response = self.session.request(method, url, **kwargs)
        except requests.exceptions.ConnectionError as e:
            raise APIError(f"Connection error: {str(e)}")
        except requests.exceptions.Timeout as e:
            raise APIError(f"Request timeout: {str(e)}")
        except requests.exceptions.RequestException as e:
            raise APIError(f"Request failed: {str(e)}")

        if response.status_code >= 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {"error": response.text}
            if not isinstance(error_data, dict):
                error_data = {"error": response.text}

            raise APIError(
                message=error_data.get("error") or f"unexpected status code: {response.status_code}",
                status_code=response.status_code,
                response_data=error_data,
            )

        return response

    def _request(
        self,
        method: str,
        endpoint: str,
        cancel: Optional[threading.Event] = None,
        **kwargs
    ) -> requests.Response:
        """
        Make an HTTP request with rate limiting and retries.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint or absolute URL
            cancel: Cancellation token checked at every wait
            **kwargs: Additional arguments for requests

        Returns:
            The successful response

        Raises:
            APIError: On a non-retryable failure
            RetryExhaustedError: When retryable failures outlast max_retries
            Cancelled: If the cancellation token fires while waiting
        """
        url = self._build_url(endpoint)

        def attempt() -> requests.Response:
            self.limiter.wait(cancel)
            return self._send(method, url, **kwargs)

        # Backoff schedule: 1s, 2s, 4s, ... between attempts
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=1),
            retry=retry_if_exception(_is_retryable),
            sleep=lambda seconds: self.clock.sleep(seconds, cancel),
            before_sleep=lambda retry_state: _log_retry(url, retry_state),
        )

        try:
            return retrying(attempt)
        except RetryError as e:
            raise RetryExhaustedError(self.max_retries, e.last_attempt.exception()) from e

    def close(self) -> None:
        """Close the session."""
        self.session.close()
