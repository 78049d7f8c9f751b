"""ProBit fetcher.

The ticker endpoint answers 400 when asked for an unknown market id, so the
full ticker list is fetched and filtered locally.

Endpoint: https://api.probit.com/api/exchange/v1/ticker
Rate Limit: Medium (no key required)
"""

import logging

from ..errors import PriceValidationError
from ..price_validation import round_to_three_decimals
from .base import BaseFetcher, FetcherError

logger = logging.getLogger(__name__)


class ProbitFetcher(BaseFetcher):
    """Fetcher for the ProBit exchange ticker API."""

    name = "probit"
    exchange_name = "Probit"
    BASE_URL = "https://api.probit.com/api/exchange/v1"
    MARKET_IDS = ("HIVE-USDT",)

    async def get_price(self) -> float:
        """Fetch the HIVE price from ProBit.

        Markets whose price fails validation are skipped.

        :returns: Mean of the valid markets, rounded to three decimals.
        :raises FetcherError: If no tracked market has a valid price.
        """
        body = await self.fetch_with_retry(
            lambda: self._get_json(f"{self.BASE_URL}/ticker")
        )
        items = body.get("data") if isinstance(body, dict) else None
        if not isinstance(items, list):
            raise FetcherError(f"ProBit ticker response has no data list: {body!r}")

        prices: list[float] = []
        for item in items:
            if not isinstance(item, dict) or item.get("market_id") not in self.MARKET_IDS:
                continue
            try:
                prices.append(self.validate_price_data(item.get("last"), item["market_id"]))
            except PriceValidationError as e:
                logger.debug(f"[probit] Skipping {item.get('market_id')}: {e}")

        if not prices:
            raise FetcherError(f"Failed to fetch any HIVE prices from {self.exchange_name}")

        return round_to_three_decimals(sum(prices) / len(prices))
