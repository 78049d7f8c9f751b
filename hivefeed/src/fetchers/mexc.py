"""MEXC fetcher.

Endpoint: https://api.mexc.com/api/v3/ticker/price?symbol=HIVEUSDT
Rate Limit: High (no key required)
"""

from ..price_validation import round_to_three_decimals
from .base import BaseFetcher


class MEXCFetcher(BaseFetcher):
    """Fetcher for the MEXC spot ticker API (Binance compatible)."""

    name = "mexc"
    exchange_name = "MEXC"
    BASE_URL = "https://api.mexc.com/api/v3"
    SYMBOL = "HIVEUSDT"

    async def get_price(self) -> float:
        """Fetch the HIVE price from MEXC."""
        return await self.fetch_with_retry(self._fetch_price)

    async def _fetch_price(self) -> float:
        data = await self._get_json(
            f"{self.BASE_URL}/ticker/price", params={"symbol": self.SYMBOL}
        )
        raw = data.get("price") if isinstance(data, dict) else None
        return round_to_three_decimals(self.validate_price_data(raw, self.SYMBOL))
