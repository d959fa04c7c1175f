"""Async HTTP clients for the external book catalogs."""
import asyncio
import httpx
from typing import List, Optional, Dict, Any
import logging

from bookclub.errors import ConfigurationError, RateLimited, SearchTimeout, TransportError
from bookclub.models import SearchResultRecord
from bookclub.parse import parse_list_response, parse_volumes_response

logger = logging.getLogger(__name__)

NYT_KEY_PLACEHOLDER = "YOUR_NYT_API_KEY_HERE"
NYT_KEY_MISSING = (
    "To view NYT Bestsellers, set NYT_API_KEY to an API key "
    "from developer.nytimes.com."
)

# Curated NYT lists offered as quick browse buttons
FICTION_LIST = "combined-print-and-e-book-fiction"
NONFICTION_LIST = "combined-print-and-e-book-nonfiction"
BOOK_CLUB_PICKS_LIST = "trade-fiction-paperback"
CURATED_LISTS = (FICTION_LIST, NONFICTION_LIST, BOOK_CLUB_PICKS_LIST)

QUICK_SEARCHES = ("subject:mystery", "subject:biography")


class AsyncGoogleBooksClient:
    """Async client for the Google Books volumes search."""

    BASE_URL = "https://www.googleapis.com/books/v1/volumes"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 15,
        max_results: int = 40,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize async client.

        Args:
            api_key: Optional API key
            timeout: Hard limit for one search, in seconds
            max_results: Result cap sent to the API (at most 40)
            transport: Optional httpx transport, mainly for tests
        """
        self.api_key = api_key
        self.timeout = timeout
        self.max_results = min(max_results, 40)

        # Cancellation via wait_for enforces the limit, not httpx
        self.client = httpx.AsyncClient(timeout=None, transport=transport)

    async def search(self, query: str) -> List[SearchResultRecord]:
        """
        Search for books.

        Args:
            query: Free-text or ``subject:`` query

        Returns:
            Results in API order

        Raises:
            SearchTimeout: No answer within ``timeout`` seconds
            RateLimited: The API answered 429
            TransportError: Any other network or HTTP failure
        """
        if not query or not query.strip():
            return []

        params: Dict[str, Any] = {
            "q": query,
            "maxResults": self.max_results,
            "printType": "books"
        }

        if self.api_key:
            params["key"] = self.api_key

        logger.info(f"Searching catalog: {query}")
        try:
            response = await asyncio.wait_for(
                self.client.get(self.BASE_URL, params=params),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"Search timed out after {self.timeout}s: {query}")
            raise SearchTimeout("The book search timed out. Please try again.")
        except httpx.HTTPError as e:
            logger.error(f"Search request failed: {e}")
            raise TransportError(str(e)) from e

        if response.status_code == 429:
            logger.warning(f"Rate limited (429) for query: {query}")
            raise RateLimited()
        if not response.is_success:
            logger.warning(f"Status {response.status_code} for query: {query}")
            raise TransportError(f"API Error: {response.status_code} {response.reason_phrase}")

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(f"Malformed response: {e}") from e
        if not isinstance(payload, dict):
            raise TransportError("Malformed response: expected a JSON object")

        results = parse_volumes_response(payload)
        logger.info(f"Found {len(results)} books for: {query}")
        return results

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()


class AsyncNYTBooksClient:
    """Async client for the NYT bestseller lists."""

    BASE_URL = "https://api.nytimes.com/svc/books/v3/lists/current/{}.json"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 15,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and self.api_key != NYT_KEY_PLACEHOLDER

    async def fetch_curated_list(self, list_id: str) -> List[SearchResultRecord]:
        """
        Fetch the current edition of a bestseller list.

        Args:
            list_id: NYT list name, e.g. ``combined-print-and-e-book-fiction``

        Returns:
            Books on the list, in rank order

        Raises:
            ConfigurationError: No API key is configured
            TransportError: Network or HTTP failure
        """
        if not self.configured:
            raise ConfigurationError(NYT_KEY_MISSING)

        url = self.BASE_URL.format(list_id)
        logger.info(f"Fetching bestseller list: {list_id}")
        try:
            response = await self.client.get(url, params={"api-key": self.api_key.strip()})
        except httpx.HTTPError as e:
            logger.error(f"Bestseller request failed: {e}")
            raise TransportError(str(e)) from e

        if not response.is_success:
            logger.warning(f"Status {response.status_code} for list: {list_id}")
            raise TransportError(f"API Error: {response.status_code} {response.reason_phrase}")

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(f"Malformed response: {e}") from e
        if not isinstance(payload, dict):
            raise TransportError("Malformed response: expected a JSON object")

        return parse_list_response(payload)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
