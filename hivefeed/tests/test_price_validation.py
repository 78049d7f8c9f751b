"""Unit tests for price validation helpers."""

import math
from decimal import Decimal

import pytest

from hivefeed.src.errors import PriceValidationError
from hivefeed.src.price_validation import (
    MAX_PRICE,
    is_valid_price,
    round_to_three_decimals,
    validate_price,
)


class TestValidatePrice:
    """Test validate_price()."""

    @pytest.mark.parametrize("price", [0.001, 0.2345, 1.0, 42.5, MAX_PRICE])
    def test_string_and_number_agree(self, price: float) -> None:
        """A price given as a string validates to the same value as the number."""
        assert validate_price(str(price), "HIVEUSDT", "Binance") == validate_price(
            price, "HIVEUSDT", "Binance"
        )

    def test_accepts_int_and_decimal(self) -> None:
        """Integers and Decimals are accepted and returned as floats."""
        assert validate_price(3, "HIVEUSDT", "Binance") == 3.0
        assert validate_price(Decimal("0.25"), "HIVEUSDT", "Binance") == 0.25

    def test_missing_value(self) -> None:
        """None is a missing field."""
        with pytest.raises(PriceValidationError) as exc_info:
            validate_price(None, "HIVEUSDT", "Binance")
        assert exc_info.value.code == PriceValidationError.MISSING_FIELD
        assert exc_info.value.exchange_name == "Binance"

    @pytest.mark.parametrize("raw", ["abc", "", "NaN", "inf", [], {}, True, object()])
    def test_non_numeric_is_invalid_data(self, raw: object) -> None:
        """Non-numeric and non-finite input fails with INVALID_DATA."""
        with pytest.raises(PriceValidationError) as exc_info:
            validate_price(raw, "HIVEUSDT", "MEXC")
        assert exc_info.value.code == PriceValidationError.INVALID_DATA
        assert exc_info.value.invalid_data is raw

    @pytest.mark.parametrize("raw", [0, -0.5, "-1", MAX_PRICE + 0.01, "1e9"])
    def test_out_of_range(self, raw: object) -> None:
        """Zero, negative and too large prices fail with OUT_OF_RANGE."""
        with pytest.raises(PriceValidationError) as exc_info:
            validate_price(raw, "HIVEUSDT", "Huobi")
        assert exc_info.value.code == PriceValidationError.OUT_OF_RANGE
        assert not exc_info.value.is_retryable()

    def test_custom_bound(self) -> None:
        """The upper bound is configurable."""
        with pytest.raises(PriceValidationError):
            validate_price(2.0, "HIVEUSDT", "Huobi", max_price=1.0)


class TestIsValidPrice:
    """Test is_valid_price()."""

    def test_valid(self) -> None:
        assert is_valid_price(0.231)
        assert is_valid_price(5)

    @pytest.mark.parametrize("value", [0, -1.0, math.nan, math.inf, "0.2", None, True])
    def test_invalid(self, value: object) -> None:
        assert not is_valid_price(value)


class TestRoundToThreeDecimals:
    """Test round_to_three_decimals()."""

    def test_rounds_half_up(self) -> None:
        """Halves round away from zero, without binary float bias."""
        assert round_to_three_decimals(1.0005) == 1.001
        assert round_to_three_decimals(0.2345) == 0.235

    def test_rounds_down(self) -> None:
        assert round_to_three_decimals(10.0003333) == 10.0

    def test_already_rounded(self) -> None:
        assert round_to_three_decimals(0.231) == 0.231
