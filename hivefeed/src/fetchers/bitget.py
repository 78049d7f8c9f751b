"""Bitget fetcher.

Checks that the HIVEUSDT market is online before reading its ticker.

Endpoints:
    https://api.bitget.com/api/v2/spot/public/symbols?symbol=HIVEUSDT
    https://api.bitget.com/api/v2/spot/market/tickers?symbol=HIVEUSDT
Rate Limit: Medium (no key required)
"""

import logging

from ..price_validation import round_to_three_decimals
from .base import BaseFetcher, FetcherError

logger = logging.getLogger(__name__)


class BitgetFetcher(BaseFetcher):
    """Fetcher for the Bitget spot API.

    Bitget wraps every payload in ``{"code": "00000", "msg": ..., "data": [...]}``.
    """

    name = "bitget"
    exchange_name = "Bitget"
    BASE_URL = "https://api.bitget.com/api/v2/spot"
    SYMBOL = "HIVEUSDT"
    OK_CODE = "00000"

    async def get_price(self) -> float:
        """Fetch the HIVE price from Bitget.

        :returns: Last traded price, rounded to three decimals.
        :raises FetcherError: If the market is missing or not online.
        """
        symbols = await self._get_data(
            f"{self.BASE_URL}/public/symbols", operation="symbol_lookup"
        )
        market = next((s for s in symbols if s.get("symbol") == self.SYMBOL), None)
        if market is None:
            raise FetcherError(f"{self.SYMBOL} symbol not found in Bitget response")
        if market.get("status") != "online":
            raise FetcherError(
                f"{self.SYMBOL} trading is not online, status: {market.get('status')}"
            )

        tickers = await self._get_data(f"{self.BASE_URL}/market/tickers")
        ticker = next((t for t in tickers if t.get("symbol") == self.SYMBOL), None)
        if ticker is None:
            raise FetcherError(f"{self.SYMBOL} ticker not found")

        price = self.validate_price_data(
            ticker.get("lastPr") or ticker.get("close"), self.SYMBOL
        )
        return round_to_three_decimals(price)

    async def _get_data(self, url: str, operation: str = "http_request") -> list[dict]:
        """GET a Bitget endpoint and unwrap its ``data`` list."""
        body = await self._get_json(
            url, params={"symbol": self.SYMBOL}, operation=operation
        )
        if not isinstance(body, dict) or body.get("code") != self.OK_CODE:
            msg = body.get("msg") if isinstance(body, dict) else body
            raise FetcherError(f"Bitget API error: {msg}")
        data = body.get("data")
        if not isinstance(data, list):
            raise FetcherError(f"Bitget API returned no data list: {data!r}")
        return [item for item in data if isinstance(item, dict)]
