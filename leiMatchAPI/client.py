"""
GLEIF API Client
Handles requests to the public GLEIF LEI registry API.
"""

import os
import logging
from typing import Any, Dict, List, Optional

import requests
from dotenv import load_dotenv
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_API_URL = 'https://api.gleif.org/api/v1'
DEFAULT_TIMEOUT = 30
DEFAULT_MAX_ATTEMPTS = 3


class GleifClientError(Exception):
    """Base exception for GLEIF client errors."""

    pass


class GleifNotFoundError(GleifClientError):
    """Raised when the requested resource does not exist (404)."""

    pass


class GleifRateLimitError(GleifClientError):
    """Raised when the registry rejects a request for rate limiting (429)."""

    pass


class GleifServerError(GleifClientError):
    """Raised on 5xx responses."""

    pass


RETRYABLE_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    GleifRateLimitError,
    GleifServerError,
)


class GleifClient:
    """Client for the GLEIF LEI records API."""

    def __init__(self, api_url: Optional[str] = None, timeout: Optional[float] = None,
                 max_attempts: Optional[int] = None, backoff: float = 1.0):
        """
        Initialize GLEIF API client.

        Args:
            api_url: GLEIF API base URL (reads from GLEIF_API_URL env var if not provided)
            timeout: Request timeout in seconds (reads from GLEIF_TIMEOUT env var if not provided)
            max_attempts: Attempts per request on transient errors (reads from GLEIF_MAX_ATTEMPTS)
            backoff: Multiplier for the exponential wait between attempts
        """
        self.api_url = (api_url or os.getenv('GLEIF_API_URL', DEFAULT_API_URL)).rstrip('/')
        if timeout is None:
            timeout = os.getenv('GLEIF_TIMEOUT', DEFAULT_TIMEOUT)
        if max_attempts is None:
            max_attempts = os.getenv('GLEIF_MAX_ATTEMPTS', DEFAULT_MAX_ATTEMPTS)
        self.timeout = float(timeout)
        self.max_attempts = int(max_attempts)
        self.backoff = backoff

        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.session = requests.Session()
        self.session.headers.update({
            'Accept': 'application/vnd.api+json',
            'User-Agent': 'leiMatch GLEIF Client',
        })

    def record_url(self, lei: str) -> str:
        """URL of the LEI record for an identifier."""
        return f"{self.api_url}/lei-records/{lei}"

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET a registry URL and decode the JSON body.

        Connection errors, timeouts, 429 and 5xx responses are retried with
        exponential backoff up to max_attempts.

        Args:
            url: Absolute URL (registry links are absolute)
            params: Optional query parameters

        Returns:
            Decoded JSON document

        Raises:
            GleifNotFoundError: on 404
            GleifClientError: on any other failure once retries are exhausted
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, min=self.backoff, max=10 * self.backoff),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    return self._request(url, params)
        except GleifClientError:
            raise
        except requests.exceptions.RequestException as e:
            logger.error(f"Network error requesting {url}: {e}")
            raise GleifClientError(f"Network error: {e}") from e

    def _request(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        logger.debug(f"GET {url} params={params}")
        response = self.session.get(url, params=params, timeout=self.timeout)

        if response.status_code == 404:
            raise GleifNotFoundError(f"Resource not found: {url}")
        if response.status_code == 429:
            logger.warning(f"Rate limited by GLEIF API: {url}")
            raise GleifRateLimitError(f"Rate limit exceeded: {url}")
        if response.status_code >= 500:
            raise GleifServerError(f"GLEIF API error {response.status_code}: {url}")

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            logger.error(f"API request failed: {e}, response: {response.text}")
            raise GleifClientError(f"API request failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise GleifClientError(f"Invalid JSON from {url}") from e

    def get_record(self, lei: str) -> Dict[str, Any]:
        """Fetch the LEI record document for an identifier."""
        return self.get_json(self.record_url(lei))

    def search_by_name(self, name: str, page_size: int = 1) -> List[Dict[str, Any]]:
        """
        Search LEI records by legal name.

        Args:
            name: Legal name to look for (encoded into the query string)
            page_size: Number of results requested

        Returns:
            List of LEI record resources, possibly empty
        """
        params = {
            'filter[entity.legalName]': name,
            'page[size]': page_size,
        }
        document = self.get_json(f"{self.api_url}/lei-records", params=params)
        data = document.get('data') if isinstance(document, dict) else None
        return data if isinstance(data, list) else []

    def list_children(self, url: str, page_size: int = 10) -> List[Dict[str, Any]]:
        """
        Fetch the first page of a direct-children listing link.

        Args:
            url: The "related" link of a record's direct-children relationship
            page_size: Maximum number of children returned

        Returns:
            List of LEI record resources, possibly empty
        """
        params = {
            'page[size]': page_size,
            'page[number]': 1,
        }
        document = self.get_json(url, params=params)
        data = document.get('data') if isinstance(document, dict) else None
        return data if isinstance(data, list) else []
