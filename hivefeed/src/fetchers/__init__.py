"""
Price fetchers for the exchanges listing HIVE.

Every fetcher implements the same capability: an ``exchange_name`` and an
async ``get_price()`` returning the HIVE price in USD, rounded to three
decimals. Fetchers are normally materialized lazily by the
:class:`~hivefeed.src.ProviderRegistry.ProviderRegistry`.

Usage:
    from hivefeed.src.fetchers import BinanceFetcher

    fetcher = BinanceFetcher(timeout=5.0)
    price = await fetcher.get_price()
"""

from .base import BaseFetcher, FetcherError
from .binance import BinanceFetcher
from .bitget import BitgetFetcher
from .huobi import HuobiFetcher
from .mexc import MEXCFetcher
from .probit import ProbitFetcher

__all__ = [
    # Base classes
    "BaseFetcher",
    "FetcherError",
    # Fetcher implementations
    "BinanceFetcher",
    "BitgetFetcher",
    "HuobiFetcher",
    "MEXCFetcher",
    "ProbitFetcher",
]
