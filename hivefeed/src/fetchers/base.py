"""Base fetcher interface and shared HTTP client management.

All price fetchers inherit from BaseFetcher and implement get_price().
A shared httpx.AsyncClient is used across all fetchers to avoid connection overhead.

Two helpers do the heavy lifting for subclasses:

- ``_get_json()`` performs one GET with a hard timeout, maps HTTP statuses to
  typed errors and retries as those errors advise.
- ``fetch_with_retry()`` wraps a whole fetch attempt with exponential backoff.

.. code-block:: python

    class MyFetcher(BaseFetcher):
        name = "myexchange"
        exchange_name = "MyExchange"
        BASE_URL = "https://api.example.com"

        async def get_price(self) -> float:
            data = await self.fetch_with_retry(
                lambda: self._get_json(f"{self.BASE_URL}/ticker/HIVEUSDT")
            )
            price = self.validate_price_data(data.get("last"), "HIVEUSDT")
            return round_to_three_decimals(price)
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, ClassVar, TypeVar

import httpx

from ..errors import PriceAPIError, PriceNetworkError, retry_operation
from ..price_validation import validate_price

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_AGENT = "HiveFeedPrice/1.0"


class FetcherError(Exception):
    """Raised when an exchange answers with a payload we cannot use."""

    pass


class BaseFetcher(ABC):
    """Abstract base class for price fetchers.

    Subclasses must implement:
        - name: Class variable identifying the source (e.g., "binance")
        - exchange_name: Display name (e.g., "Binance")
        - get_price(): Async method returning the HIVE price in USD

    :cvar name: Unique identifier for this fetcher.
    :cvar exchange_name: Human readable exchange name.
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :ivar request_timeout: Hard timeout per HTTP request in seconds.
    :ivar retry_attempts: Attempts made by fetch_with_retry().
    :ivar retry_delay: Base backoff of fetch_with_retry() in seconds.
    :ivar max_retries: Attempts made by _get_json() per request.
    """

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    # Fetcher identification
    name: ClassVar[str] = ""
    exchange_name: ClassVar[str] = ""

    DEFAULT_TIMEOUT = 10.0
    DEFAULT_RETRY_ATTEMPTS = 3
    DEFAULT_RETRY_DELAY = 1.0
    DEFAULT_MAX_RETRIES = 3

    def __init__(
        self,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the fetcher.

        :param timeout: Request timeout in seconds (default: 10).
        :param client: Optional HTTP client; the shared client is used if None.
        """
        self.request_timeout = timeout or self.DEFAULT_TIMEOUT
        self.retry_attempts = self.DEFAULT_RETRY_ATTEMPTS
        self.retry_delay = self.DEFAULT_RETRY_DELAY
        self.max_retries = self.DEFAULT_MAX_RETRIES
        self.client = client

    def configure(
        self,
        *,
        request_timeout: float | None = None,
        retry_attempts: int | None = None,
        retry_delay: float | None = None,
        max_retries: int | None = None,
    ) -> None:
        """Apply per-provider overrides. None leaves a setting unchanged."""
        if request_timeout is not None:
            self.request_timeout = request_timeout
        if retry_attempts is not None:
            self.retry_attempts = retry_attempts
        if retry_delay is not None:
            self.retry_delay = retry_delay
        if max_retries is not None:
            self.max_retries = max_retries

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        The client is shared across all fetcher instances to reuse connections.

        :returns: Shared httpx.AsyncClient instance.
        """
        if cls._shared_client is None or cls._shared_client.is_closed:
            BaseFetcher._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                follow_redirects=True,
            )
        return BaseFetcher._shared_client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        if BaseFetcher._shared_client is not None and not BaseFetcher._shared_client.is_closed:
            await BaseFetcher._shared_client.aclose()
        BaseFetcher._shared_client = None

    @abstractmethod
    async def get_price(self) -> float:
        """Fetch the current HIVE price in USD.

        :returns: Price rounded to three decimals.
        :raises PriceFeedError: On network, API or validation failure.
        :raises FetcherError: When the exchange payload is unusable.
        """
        pass

    def validate_price_data(self, raw: Any, symbol: str) -> float:
        """Validate a raw price value on behalf of this exchange."""
        return validate_price(raw, symbol, self.exchange_name)

    async def fetch_with_retry(self, fetch_fn: Callable[[], Awaitable[T]]) -> T:
        """Run one fetch attempt, retrying with exponential backoff.

        Waits ``retry_delay * 2 ** (attempt - 1)`` seconds between attempts,
        never before the first one. The last error is raised once all
        attempts are exhausted.

        :param fetch_fn: Zero-argument coroutine function doing one attempt.
        :returns: Result of the first successful attempt.
        """
        attempts = max(1, self.retry_attempts)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await fetch_fn()
            except Exception as e:
                last_error = e
                logger.warning(
                    f"[{self.name}] Attempt {attempt}/{attempts} failed: {e}"
                )
                if attempt < attempts:
                    await asyncio.sleep(self.retry_delay * 2 ** (attempt - 1))

        assert last_error is not None
        raise last_error

    async def _get_json(
        self,
        url: str,
        *,
        params: dict | None = None,
        operation: str = "http_request",
    ) -> Any:
        """GET a URL and decode its JSON body, retrying transient failures.

        :param url: Request URL.
        :param params: Optional query parameters.
        :param operation: Operation name attached to errors.
        :returns: Decoded JSON body.
        :raises PriceNetworkError: On timeout or connection failure.
        :raises PriceAPIError: On non-2xx status or undecodable body.
        """
        return await retry_operation(
            lambda: self._request_json(url, params=params),
            operation=operation,
            exchange_name=self.exchange_name,
            max_retries=self.max_retries,
        )

    async def _request_json(self, url: str, *, params: dict | None = None) -> Any:
        """Perform a single GET and interpret the response."""
        client = self.client or self.get_shared_client()
        try:
            response = await asyncio.wait_for(
                client.get(
                    url,
                    params=params,
                    headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                    timeout=self.request_timeout,
                ),
                timeout=self.request_timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise PriceNetworkError(
                f"Request timeout after {self.request_timeout}s",
                PriceNetworkError.TIMEOUT,
                operation="http_request",
                exchange_name=self.exchange_name,
                cause=e,
            ) from e

        if not response.is_success:
            logger.debug(
                "HTTP GET %s failed with status %s: %s",
                url,
                response.status_code,
                response.text[:200],
            )
            raise self._status_error(response, url)

        try:
            return response.json()
        except ValueError as e:
            raise PriceAPIError(
                "Invalid JSON response",
                PriceAPIError.INVALID_RESPONSE,
                operation="response_parsing",
                exchange_name=self.exchange_name,
                http_status=response.status_code,
                cause=e,
            ) from e

    def _status_error(self, response: httpx.Response, url: str) -> PriceAPIError:
        """Map a non-2xx response to a typed API error."""
        status = response.status_code
        common: dict[str, Any] = {
            "operation": "http_request",
            "exchange_name": self.exchange_name,
            "http_status": status,
        }

        if status == 429:
            return PriceAPIError(
                "Rate limit exceeded",
                PriceAPIError.RATE_LIMITED,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
                **common,
            )
        if status >= 500:
            return PriceAPIError(
                f"Server error: HTTP {status} {response.reason_phrase}",
                PriceAPIError.SERVER_ERROR,
                **common,
            )
        if status == 404:
            return PriceAPIError(
                f"Resource not found: {url}",
                PriceAPIError.NOT_FOUND,
                **common,
            )
        return PriceAPIError(
            f"HTTP error: {status} {response.reason_phrase}",
            PriceAPIError.INVALID_RESPONSE,
            **common,
        )


def _parse_retry_after(value: str | None) -> int | None:
    """Parse a ``Retry-After`` header given in seconds."""
    if not value:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


async def mean_of_successes(
    exchange_name: str, fetches: list[Awaitable[float]]
) -> float:
    """Run fetches concurrently and average the ones that succeed.

    :param exchange_name: Exchange name used in the failure message.
    :param fetches: Awaitables each yielding one market's price.
    :returns: Unrounded mean of the successful prices.
    :raises FetcherError: If none of the fetches succeeded.
    """
    results = await asyncio.gather(*fetches, return_exceptions=True)
    prices = [r for r in results if not isinstance(r, BaseException)]

    for r in results:
        if isinstance(r, BaseException):
            logger.debug(f"[{exchange_name}] Market fetch failed: {r}")

    if not prices:
        raise FetcherError(f"Failed to fetch any HIVE prices from {exchange_name}")
    if len(prices) == 1:
        return prices[0]
    return sum(prices) / len(prices)
