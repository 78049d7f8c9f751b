"""
HIVE Price Feed - Multi-Exchange Aggregation Module

This module provides the HIVE/USD price from several exchanges:
- ProviderRegistry: Descriptor-based provider configuration with lazy loading
- PriceAggregator: Concurrent rounds, plain or weighted mean, round retries
- RpcFailover: Sticky RPC node selection with rotation on network failures
- FeedPublisher: Submits the aggregated price to the aggregator contract
- PriceOracle: Interval daemon driving the publisher
- errors: Typed error taxonomy with per-code retry policy
- fetchers: One fetcher per exchange
"""

from .errors import (
    AggregationError,
    ConfigurationError,
    PriceAPIError,
    PriceFeedError,
    PriceNetworkError,
    PriceValidationError,
    classify_error,
)
from .FeedPublisher import FeedPublisher
from .PriceAggregator import ExchangePrice, PriceAggregator, WeightedExchangePrice
from .PriceOracle import PriceOracle, parse_update_interval
from .ProviderRegistry import ProviderDescriptor, ProviderRegistry
from .RpcFailover import RpcFailover, is_recoverable_rpc_error

__all__ = [
    "AggregationError",
    "ConfigurationError",
    "ExchangePrice",
    "FeedPublisher",
    "PriceAPIError",
    "PriceAggregator",
    "PriceFeedError",
    "PriceNetworkError",
    "PriceOracle",
    "PriceValidationError",
    "ProviderDescriptor",
    "ProviderRegistry",
    "RpcFailover",
    "WeightedExchangePrice",
    "classify_error",
    "is_recoverable_rpc_error",
    "parse_update_interval",
]
