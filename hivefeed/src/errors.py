"""Typed errors for the price feed, plus the classifier and retry driver.

Every error knows whether it is worth retrying and how long to wait before
doing so. Callers never decide that from the error code themselves, they ask
the error:

.. code-block:: python

    >>> err = PriceAPIError(
    ...     "Rate limit exceeded",
    ...     PriceAPIError.RATE_LIMITED,
    ...     exchange_name="Binance",
    ...     retry_after=7,
    ... )
    >>> err.is_retryable()
    True
    >>> err.get_retry_delay()
    7.0

Raw exceptions (httpx errors, timeouts, plain ``Exception`` with a message)
are turned into typed errors by :func:`classify_error`.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, ClassVar, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"
SEVERITY_CRITICAL = "critical"

_RETRY_AFTER_RE = re.compile(r"retry.after[:\s]+(\d+)", re.IGNORECASE)
_HTTP_STATUS_RE = re.compile(
    r"HTTP\s+(\d{3})|status[:\s]+(\d{3})|(\d{3})\s+error", re.IGNORECASE
)


@dataclass
class ErrorContext:
    """Where and how an error happened.

    :ivar operation: Name of the operation that failed (e.g. "http_request").
    :ivar exchange_name: Exchange the failure belongs to, if any.
    :ivar severity: One of the ``SEVERITY_*`` constants.
    :ivar http_status: HTTP status code, when the failure came from a response.
    :ivar retry_after: Seconds the server asked us to wait (``Retry-After``).
    """

    operation: str = "price_operation"
    exchange_name: str | None = None
    severity: str = SEVERITY_MEDIUM
    http_status: int | None = None
    retry_after: int | None = None


class PriceFeedError(Exception):
    """Base class for all typed errors.

    Subclasses declare a ``POLICY`` table mapping each of their codes to
    ``(retryable, retry_delay_seconds)``.

    :cvar domain: Error domain constant.
    :cvar POLICY: Retry policy per error code.
    :ivar code: Error code, one of the subclass constants.
    :ivar context: :class:`ErrorContext` describing the failure.
    :ivar timestamp: When the error was created (UTC).
    """

    domain: ClassVar[str] = "PRICE_FEED"
    default_severity: ClassVar[str] = SEVERITY_MEDIUM
    POLICY: ClassVar[dict[str, tuple[bool, float]]] = {}

    def __init__(
        self,
        message: str,
        code: str,
        *,
        operation: str = "price_operation",
        exchange_name: str | None = None,
        severity: str | None = None,
        http_status: int | None = None,
        retry_after: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize the error.

        :param message: Human readable message.
        :param code: Error code.
        :param operation: Operation that failed.
        :param exchange_name: Exchange involved, if any.
        :param severity: Severity override (defaults per class).
        :param http_status: HTTP status code, if any.
        :param retry_after: Server-requested delay in seconds, if any.
        :param cause: Underlying exception, stored as ``__cause__``.
        :raises ValueError: If code is not known to this error class.
        """
        if self.POLICY and code not in self.POLICY:
            raise ValueError(f"Unknown {type(self).__name__} code: {code}")
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = ErrorContext(
            operation=operation,
            exchange_name=exchange_name,
            severity=severity or self.default_severity,
            http_status=http_status,
            retry_after=retry_after,
        )
        self.timestamp = datetime.now(timezone.utc)
        if cause is not None:
            self.__cause__ = cause

    @property
    def exchange_name(self) -> str | None:
        return self.context.exchange_name

    @property
    def http_status(self) -> int | None:
        return self.context.http_status

    @property
    def retry_after(self) -> int | None:
        return self.context.retry_after

    def is_retryable(self) -> bool:
        """Whether retrying the failed operation may succeed."""
        return self.POLICY.get(self.code, (False, 0.0))[0]

    def get_retry_delay(self) -> float:
        """Suggested delay before the next attempt, in seconds."""
        retryable, delay = self.POLICY.get(self.code, (False, 0.0))
        return delay if retryable else 0.0

    def to_dict(self) -> dict[str, Any]:
        """Structured form for logs and diagnostics export."""
        return {
            "name": type(self).__name__,
            "domain": self.domain,
            "code": self.code,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "context": asdict(self.context),
            "retryable": self.is_retryable(),
            "retry_delay": self.get_retry_delay(),
            "cause": str(self.__cause__) if self.__cause__ else None,
        }


class PriceNetworkError(PriceFeedError):
    """Network level failure talking to an exchange."""

    TIMEOUT = "PRICE_NETWORK_TIMEOUT"
    CONNECTION_FAILED = "PRICE_NETWORK_CONNECTION_FAILED"
    UNREACHABLE = "PRICE_NETWORK_UNREACHABLE"

    BASE_DELAY = 1.0

    default_severity = SEVERITY_HIGH
    POLICY = {
        TIMEOUT: (True, BASE_DELAY * 2),
        CONNECTION_FAILED: (True, BASE_DELAY * 3),
        UNREACHABLE: (False, 0.0),
    }


class PriceAPIError(PriceFeedError):
    """The exchange answered, but not with something usable."""

    RATE_LIMITED = "PRICE_API_RATE_LIMITED"
    UNAUTHORIZED = "PRICE_API_UNAUTHORIZED"
    NOT_FOUND = "PRICE_API_NOT_FOUND"
    SERVER_ERROR = "PRICE_API_SERVER_ERROR"
    INVALID_RESPONSE = "PRICE_API_INVALID_RESPONSE"

    default_severity = SEVERITY_HIGH
    POLICY = {
        RATE_LIMITED: (True, 5.0),
        SERVER_ERROR: (True, 3.0),
        UNAUTHORIZED: (False, 0.0),
        NOT_FOUND: (False, 0.0),
        INVALID_RESPONSE: (False, 0.0),
    }

    def __init__(self, message: str, code: str, **kwargs: Any) -> None:
        if code == self.RATE_LIMITED and "severity" not in kwargs:
            kwargs["severity"] = SEVERITY_MEDIUM
        super().__init__(message, code, **kwargs)

    def get_retry_delay(self) -> float:
        """Honour ``Retry-After`` for rate limiting, else the policy delay."""
        if self.code == self.RATE_LIMITED and self.retry_after:
            return float(self.retry_after)
        return super().get_retry_delay()


class PriceValidationError(PriceFeedError):
    """A price value failed validation.

    :ivar invalid_data: The offending raw value, if any.
    """

    INVALID_DATA = "PRICE_INVALID_PRICE_DATA"
    OUT_OF_RANGE = "PRICE_OUT_OF_RANGE"
    MISSING_FIELD = "PRICE_MISSING_PRICE_FIELD"

    POLICY = {
        INVALID_DATA: (True, 2.0),
        OUT_OF_RANGE: (False, 0.0),
        MISSING_FIELD: (False, 0.0),
    }

    def __init__(
        self, message: str, code: str, *, invalid_data: Any = None, **kwargs: Any
    ) -> None:
        kwargs.setdefault("operation", "price_validation")
        super().__init__(message, code, **kwargs)
        self.invalid_data = invalid_data


class ConfigurationError(PriceFeedError):
    """Provider or component configuration is unusable."""

    NO_PROVIDERS = "CONFIG_NO_PROVIDERS"
    PROVIDER_NOT_FOUND = "CONFIG_PROVIDER_NOT_FOUND"
    PROVIDER_LOAD_FAILED = "CONFIG_PROVIDER_LOAD_FAILED"
    NOT_INITIALIZED = "CONFIG_NOT_INITIALIZED"

    domain = "CONFIGURATION"
    default_severity = SEVERITY_CRITICAL
    POLICY = {
        NO_PROVIDERS: (False, 0.0),
        PROVIDER_NOT_FOUND: (False, 0.0),
        PROVIDER_LOAD_FAILED: (False, 0.0),
        NOT_INITIALIZED: (False, 0.0),
    }


class AggregationError(PriceFeedError):
    """No price could be aggregated."""

    ALL_ROUNDS_EXHAUSTED = "AGGREGATION_ALL_ROUNDS_EXHAUSTED"
    ZERO_TOTAL_WEIGHT = "AGGREGATION_ZERO_TOTAL_WEIGHT"

    domain = "AGGREGATION"
    default_severity = SEVERITY_HIGH
    POLICY = {
        ALL_ROUNDS_EXHAUSTED: (False, 0.0),
        ZERO_TOTAL_WEIGHT: (False, 0.0),
    }


def is_retryable_error(error: BaseException) -> bool:
    """Return ``error.is_retryable()`` for typed errors, False otherwise."""
    return isinstance(error, PriceFeedError) and error.is_retryable()


def get_retry_delay(error: BaseException) -> float:
    """Return ``error.get_retry_delay()`` for typed errors, 0 otherwise."""
    if isinstance(error, PriceFeedError):
        return error.get_retry_delay()
    return 0.0


def extract_retry_after(message: str) -> int | None:
    """Parse a ``retry-after: N`` hint out of an error message."""
    match = _RETRY_AFTER_RE.search(message)
    return int(match.group(1)) if match else None


def extract_http_status(message: str) -> int | None:
    """Parse an HTTP status code out of an error message."""
    match = _HTTP_STATUS_RE.search(message)
    if match:
        return int(match.group(1) or match.group(2) or match.group(3))
    return None


def _status_of(error: BaseException, message: str) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    return extract_http_status(message)


def classify_error(
    error: BaseException,
    *,
    operation: str,
    exchange_name: str | None = None,
) -> PriceFeedError:
    """Map a raw failure to a typed error.

    Typed errors pass through unchanged (their retry policy is already
    decided), only missing context is filled in. Anything else is matched in
    order: timeout, refused connection, rate limiting, then HTTP status
    (5xx, 404, 401/403), falling back to an invalid response.

    :param error: The exception to classify.
    :param operation: Name of the failed operation.
    :param exchange_name: Exchange involved, defaults to "Unknown".
    :returns: A :class:`PriceFeedError` subclass instance.

    .. code-block:: python

        >>> err = classify_error(Exception("HTTP 503 Service Unavailable"),
        ...                      operation="http_request", exchange_name="MEXC")
        >>> err.code
        'PRICE_API_SERVER_ERROR'
    """
    exchange = exchange_name or "Unknown"

    if isinstance(error, PriceFeedError):
        if error.context.exchange_name is None:
            error.context.exchange_name = exchange
        if error.context.operation == "price_operation":
            error.context.operation = operation
        return error

    message = str(error) or type(error).__name__
    lowered = message.lower()
    common: dict[str, Any] = {
        "operation": operation,
        "exchange_name": exchange,
        "cause": error,
    }

    if (
        isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError))
        or "timeout" in lowered
        or "timed out" in lowered
        or "etimedout" in lowered
    ):
        return PriceNetworkError(
            f"Network timeout for {exchange}", PriceNetworkError.TIMEOUT, **common
        )

    if (
        isinstance(error, httpx.ConnectError)
        or "econnrefused" in lowered
        or "refused" in lowered
        or ("connection" in lowered and "failed" in lowered)
    ):
        return PriceNetworkError(
            f"Connection failed to {exchange}",
            PriceNetworkError.CONNECTION_FAILED,
            **common,
        )

    if "rate limit" in lowered or "429" in lowered:
        return PriceAPIError(
            f"Rate limit exceeded for {exchange}",
            PriceAPIError.RATE_LIMITED,
            http_status=429,
            retry_after=extract_retry_after(message),
            **common,
        )

    status = _status_of(error, message)
    if status is not None:
        if status >= 500:
            return PriceAPIError(
                f"Server error from {exchange}: {message}",
                PriceAPIError.SERVER_ERROR,
                http_status=status,
                **common,
            )
        if status == 404:
            return PriceAPIError(
                f"Resource not found on {exchange}",
                PriceAPIError.NOT_FOUND,
                http_status=status,
                **common,
            )
        if status in (401, 403):
            return PriceAPIError(
                f"Unauthorized access to {exchange}",
                PriceAPIError.UNAUTHORIZED,
                http_status=status,
                **common,
            )

    return PriceAPIError(
        f"Invalid response from {exchange}: {message}",
        PriceAPIError.INVALID_RESPONSE,
        http_status=status,
        **common,
    )


async def retry_operation(
    fn: Callable[[], Awaitable[T]],
    *,
    operation: str,
    exchange_name: str | None = None,
    max_retries: int = 3,
) -> T:
    """Run ``fn`` until it succeeds, retrying as the errors themselves advise.

    Each failure is classified; a non-retryable error stops the loop at once.
    Between attempts the error's own :meth:`~PriceFeedError.get_retry_delay`
    is slept.

    :param fn: Zero-argument coroutine function to run.
    :param operation: Operation name attached to classified errors.
    :param exchange_name: Exchange name attached to classified errors.
    :param max_retries: Maximum number of attempts (at least 1).
    :returns: Whatever ``fn`` returns.
    :raises PriceFeedError: The last classified error.
    """
    attempts = max(1, max_retries)
    last_error: PriceFeedError | None = None

    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception as e:
            last_error = classify_error(
                e, operation=operation, exchange_name=exchange_name
            )
            if not last_error.is_retryable() or attempt == attempts:
                break
            delay = last_error.get_retry_delay()
            logger.debug(
                f"[{exchange_name or 'Unknown'}] {operation} attempt "
                f"{attempt}/{attempts} failed ({last_error.code}), "
                f"retrying in {delay:.1f}s"
            )
            if delay > 0:
                await asyncio.sleep(delay)

    assert last_error is not None
    raise last_error
