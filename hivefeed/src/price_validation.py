"""Price validation and rounding helpers.

.. code-block:: python

    >>> validate_price("0.2345", "HIVEUSDT", "Binance")
    0.2345
    >>> round_to_three_decimals(0.2345)
    0.235
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from .errors import PriceValidationError

# Upper sanity bound for the tracked asset, in USD.
MAX_PRICE = 10_000.0

_THREE_PLACES = Decimal("0.001")


def validate_price(
    raw: Any,
    symbol: str,
    exchange_name: str,
    *,
    max_price: float = MAX_PRICE,
) -> float:
    """Validate a raw price value reported by an exchange.

    :param raw: Raw value from the API response (string or number).
    :param symbol: Market symbol the value belongs to (for error messages).
    :param exchange_name: Exchange that reported the value.
    :param max_price: Upper sanity bound (inclusive).
    :returns: The price as a finite, positive float.
    :raises PriceValidationError: MISSING_FIELD if raw is None, INVALID_DATA
        if it is not a finite number, OUT_OF_RANGE if it is <= 0 or above
        ``max_price``.
    """
    if raw is None:
        raise PriceValidationError(
            f"Missing price data for {symbol}",
            PriceValidationError.MISSING_FIELD,
            exchange_name=exchange_name,
        )

    price: float | None = None
    if isinstance(raw, (str, int, float, Decimal)) and not isinstance(raw, bool):
        try:
            price = float(raw)
        except (ValueError, OverflowError):
            price = None

    if price is None or not math.isfinite(price):
        raise PriceValidationError(
            f"Invalid price value for {symbol}: {raw!r}",
            PriceValidationError.INVALID_DATA,
            exchange_name=exchange_name,
            invalid_data=raw,
        )

    if price <= 0 or price > max_price:
        raise PriceValidationError(
            f"Price out of valid range for {symbol}: ${price}",
            PriceValidationError.OUT_OF_RANGE,
            exchange_name=exchange_name,
            invalid_data=price,
        )

    return price


def is_valid_price(value: Any) -> bool:
    """Check that value is a positive, finite number."""
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    )


def round_to_three_decimals(value: float) -> float:
    """Round half-up to three decimal places.

    Goes through the shortest decimal representation of the float so that
    e.g. 1.0005 rounds to 1.001 rather than being biased by binary error.
    """
    return float(Decimal(repr(value)).quantize(_THREE_PLACES, rounding=ROUND_HALF_UP))
