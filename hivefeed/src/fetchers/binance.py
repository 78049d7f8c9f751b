"""Binance fetcher.

HIVE trades against two USD stablecoins on Binance. Both markets are queried
concurrently and the successful ones are averaged.

Endpoint: https://data-api.binance.vision/api/v3/ticker/price?symbol={SYMBOL}
Rate Limit: High (no key required for public market data)
"""

import logging

from ..price_validation import round_to_three_decimals
from .base import BaseFetcher, mean_of_successes

logger = logging.getLogger(__name__)


class BinanceFetcher(BaseFetcher):
    """Fetcher for the Binance public market data API.

    Queries HIVEUSDT and HIVEUSDC; a single working market is enough.
    """

    name = "binance"
    exchange_name = "Binance"
    BASE_URL = "https://data-api.binance.vision/api/v3"
    SYMBOLS = ("HIVEUSDT", "HIVEUSDC")

    async def get_price(self) -> float:
        """Fetch the HIVE price from Binance.

        :returns: Mean of the working markets, rounded to three decimals.
        """
        price = await mean_of_successes(
            self.exchange_name,
            [
                self.fetch_with_retry(lambda s=symbol: self._fetch_symbol(s))
                for symbol in self.SYMBOLS
            ],
        )
        return round_to_three_decimals(price)

    async def _fetch_symbol(self, symbol: str) -> float:
        """Fetch the last price for a single symbol.

        :param symbol: Binance symbol (e.g., "HIVEUSDT").
        :returns: Validated price.
        """
        data = await self._get_json(
            f"{self.BASE_URL}/ticker/price", params={"symbol": symbol}
        )
        raw = data.get("price") if isinstance(data, dict) else None
        return self.validate_price_data(raw, symbol)
