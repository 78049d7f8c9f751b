"""Unit tests for the typed errors, classifier and retry driver."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from hivefeed.src.errors import (
    AggregationError,
    ConfigurationError,
    PriceAPIError,
    PriceFeedError,
    PriceNetworkError,
    PriceValidationError,
    classify_error,
    extract_http_status,
    extract_retry_after,
    get_retry_delay,
    is_retryable_error,
    retry_operation,
)


class TestErrorPolicy:
    """Each error reports its own retryability and delay."""

    def test_network_errors(self) -> None:
        timeout = PriceNetworkError("t", PriceNetworkError.TIMEOUT)
        refused = PriceNetworkError("c", PriceNetworkError.CONNECTION_FAILED)
        unreachable = PriceNetworkError("u", PriceNetworkError.UNREACHABLE)

        assert timeout.is_retryable() and timeout.get_retry_delay() == 2.0
        assert refused.is_retryable() and refused.get_retry_delay() == 3.0
        assert not unreachable.is_retryable()
        assert unreachable.get_retry_delay() == 0.0

    def test_rate_limit_honours_retry_after(self) -> None:
        """Rate limiting waits for the server-advised delay when present."""
        plain = PriceAPIError("r", PriceAPIError.RATE_LIMITED)
        advised = PriceAPIError("r", PriceAPIError.RATE_LIMITED, retry_after=12)
        assert plain.get_retry_delay() == 5.0
        assert advised.get_retry_delay() == 12.0

    @pytest.mark.parametrize(
        "code",
        [
            PriceAPIError.UNAUTHORIZED,
            PriceAPIError.NOT_FOUND,
            PriceAPIError.INVALID_RESPONSE,
        ],
    )
    def test_permanent_api_errors(self, code: str) -> None:
        assert not PriceAPIError("x", code).is_retryable()

    def test_server_error_retryable(self) -> None:
        err = PriceAPIError("x", PriceAPIError.SERVER_ERROR)
        assert err.is_retryable()
        assert err.get_retry_delay() == 3.0

    def test_validation_errors(self) -> None:
        assert PriceValidationError("x", PriceValidationError.INVALID_DATA).is_retryable()
        assert not PriceValidationError("x", PriceValidationError.OUT_OF_RANGE).is_retryable()
        assert not PriceValidationError("x", PriceValidationError.MISSING_FIELD).is_retryable()

    def test_configuration_and_aggregation_not_retryable(self) -> None:
        assert not ConfigurationError("x", ConfigurationError.NO_PROVIDERS).is_retryable()
        assert not AggregationError("x", AggregationError.ALL_ROUNDS_EXHAUSTED).is_retryable()

    def test_unknown_code_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown PriceAPIError code"):
            PriceAPIError("x", PriceNetworkError.TIMEOUT)

    def test_to_dict(self) -> None:
        """The structured form carries code, context and cause."""
        cause = RuntimeError("boom")
        err = PriceAPIError(
            "Server error",
            PriceAPIError.SERVER_ERROR,
            operation="http_request",
            exchange_name="MEXC",
            http_status=502,
            cause=cause,
        )
        data = err.to_dict()
        assert data["name"] == "PriceAPIError"
        assert data["code"] == PriceAPIError.SERVER_ERROR
        assert data["context"]["exchange_name"] == "MEXC"
        assert data["context"]["http_status"] == 502
        assert data["retryable"] is True
        assert data["cause"] == "boom"
        assert err.__cause__ is cause

    def test_helpers_on_untyped_errors(self) -> None:
        """Untyped exceptions are never retryable."""
        assert not is_retryable_error(ValueError("x"))
        assert get_retry_delay(ValueError("x")) == 0.0
        assert is_retryable_error(PriceAPIError("x", PriceAPIError.SERVER_ERROR))


class TestMessageParsing:
    """Test retry-after and status extraction."""

    def test_extract_retry_after(self) -> None:
        assert extract_retry_after("Too many requests, retry-after: 30") == 30
        assert extract_retry_after("Retry After 5") == 5
        assert extract_retry_after("slow down") is None

    def test_extract_http_status(self) -> None:
        assert extract_http_status("HTTP 503 Service Unavailable") == 503
        assert extract_http_status("status: 404") == 404
        assert extract_http_status("502 error from upstream") == 502
        assert extract_http_status("no status here") is None


class TestClassifyError:
    """Test classify_error() decision order."""

    def _classify(self, error: BaseException) -> PriceFeedError:
        return classify_error(error, operation="http_request", exchange_name="Bitget")

    def test_typed_error_passes_through(self) -> None:
        """Typed errors are returned unchanged, not re-classified."""
        original = PriceAPIError("Server error", PriceAPIError.SERVER_ERROR)
        result = self._classify(original)
        assert result is original
        assert result.code == PriceAPIError.SERVER_ERROR
        assert result.exchange_name == "Bitget"
        assert result.context.operation == "http_request"

    def test_typed_error_keeps_context(self) -> None:
        original = PriceValidationError(
            "bad", PriceValidationError.INVALID_DATA, exchange_name="Huobi"
        )
        result = self._classify(original)
        assert result.exchange_name == "Huobi"
        assert result.context.operation == "price_validation"

    @pytest.mark.parametrize(
        "error",
        [
            httpx.ReadTimeout("read timed out"),
            asyncio.TimeoutError(),
            TimeoutError(),
            Exception("ETIMEDOUT while reading"),
            Exception("request timeout"),
        ],
    )
    def test_timeouts(self, error: BaseException) -> None:
        result = self._classify(error)
        assert isinstance(result, PriceNetworkError)
        assert result.code == PriceNetworkError.TIMEOUT

    @pytest.mark.parametrize(
        "error",
        [
            httpx.ConnectError("name resolution"),
            Exception("ECONNREFUSED 127.0.0.1:443"),
            Exception("Connection failed"),
        ],
    )
    def test_connection_failures(self, error: BaseException) -> None:
        result = self._classify(error)
        assert result.code == PriceNetworkError.CONNECTION_FAILED

    def test_rate_limit(self) -> None:
        result = self._classify(Exception("429 Too Many Requests, retry-after: 9"))
        assert result.code == PriceAPIError.RATE_LIMITED
        assert result.http_status == 429
        assert result.get_retry_delay() == 9.0

    def test_server_error_status(self) -> None:
        result = self._classify(Exception("HTTP 503 Service Unavailable"))
        assert result.code == PriceAPIError.SERVER_ERROR
        assert result.http_status == 503

    def test_http_status_error(self) -> None:
        request = httpx.Request("GET", "https://example.com")
        response = httpx.Response(404, request=request)
        error = httpx.HTTPStatusError("not found", request=request, response=response)
        assert self._classify(error).code == PriceAPIError.NOT_FOUND

    @pytest.mark.parametrize("status", [401, 403])
    def test_unauthorized(self, status: int) -> None:
        assert self._classify(Exception(f"HTTP {status}")).code == PriceAPIError.UNAUTHORIZED

    def test_fallback_invalid_response(self) -> None:
        result = self._classify(ValueError("unexpected payload"))
        assert result.code == PriceAPIError.INVALID_RESPONSE
        assert isinstance(result.__cause__, ValueError)

    def test_unknown_exchange(self) -> None:
        result = classify_error(Exception("weird"), operation="x")
        assert result.exchange_name == "Unknown"


class TestRetryOperation:
    """Test retry_operation()."""

    def test_success_first_try(self) -> None:
        fn = AsyncMock(return_value=1.5)
        assert asyncio.run(retry_operation(fn, operation="op")) == 1.5
        assert fn.await_count == 1

    def test_retries_with_advised_delay(self) -> None:
        """Retryable errors are retried after the error's own delay."""
        fn = AsyncMock(
            side_effect=[
                PriceAPIError("x", PriceAPIError.SERVER_ERROR),
                PriceNetworkError("y", PriceNetworkError.TIMEOUT),
                0.42,
            ]
        )
        with patch("hivefeed.src.errors.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = asyncio.run(retry_operation(fn, operation="op", max_retries=3))

        assert result == 0.42
        assert [c.args[0] for c in sleep.await_args_list] == [3.0, 2.0]

    def test_non_retryable_stops_immediately(self) -> None:
        fn = AsyncMock(side_effect=PriceAPIError("x", PriceAPIError.NOT_FOUND))
        with patch("hivefeed.src.errors.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(PriceAPIError) as exc_info:
                asyncio.run(retry_operation(fn, operation="op", max_retries=3))

        assert exc_info.value.code == PriceAPIError.NOT_FOUND
        assert fn.await_count == 1
        sleep.assert_not_awaited()

    def test_raises_last_error_when_exhausted(self) -> None:
        fn = AsyncMock(side_effect=Exception("HTTP 500"))
        with patch("hivefeed.src.errors.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(PriceAPIError) as exc_info:
                asyncio.run(
                    retry_operation(fn, operation="op", exchange_name="MEXC", max_retries=2)
                )

        assert exc_info.value.code == PriceAPIError.SERVER_ERROR
        assert exc_info.value.exchange_name == "MEXC"
        assert fn.await_count == 2
