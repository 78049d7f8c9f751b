"""Huobi (HTX) fetcher.

Uses the most recent trade rather than the ticker.

Endpoint: https://api.huobi.pro/market/history/trade?symbol=hiveusdt
Rate Limit: Medium (no key required)
"""

import logging
from typing import Any

from ..price_validation import round_to_three_decimals
from .base import BaseFetcher, FetcherError

logger = logging.getLogger(__name__)


class HuobiFetcher(BaseFetcher):
    """Fetcher for the Huobi market history API."""

    name = "huobi"
    exchange_name = "Huobi"
    BASE_URL = "https://api.huobi.pro"
    SYMBOL = "hiveusdt"

    async def get_price(self) -> float:
        """Fetch the latest HIVE trade price from Huobi.

        :returns: Latest trade price, rounded to three decimals.
        :raises FetcherError: If the API reports an error or has no trades.
        """
        data = await self._get_json(
            f"{self.BASE_URL}/market/history/trade", params={"symbol": self.SYMBOL}
        )
        if not isinstance(data, dict) or data.get("status") != "ok":
            status = data.get("status") if isinstance(data, dict) else data
            raise FetcherError(f"Huobi API error: status {status}")

        raw = self._latest_trade_price(data)
        price = self.validate_price_data(raw, self.SYMBOL.upper())
        return round_to_three_decimals(price)

    @staticmethod
    def _latest_trade_price(data: dict[str, Any]) -> Any:
        """Dig the newest trade price out of the nested response."""
        try:
            trade = data["data"][0]["data"][0]
        except (KeyError, IndexError, TypeError):
            trade = None
        if not isinstance(trade, dict) or not isinstance(trade.get("price"), (int, float)):
            raise FetcherError("No valid trade price found in Huobi response")
        return trade["price"]
