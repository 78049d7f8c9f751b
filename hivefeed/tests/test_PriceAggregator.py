"""Unit tests for PriceAggregator."""

import asyncio
import math
from unittest.mock import AsyncMock, patch

import pytest

from hivefeed.src.errors import AggregationError, ConfigurationError
from hivefeed.src.fetchers import BaseFetcher
from hivefeed.src.PriceAggregator import (
    ExchangePrice,
    PriceAggregator,
    WeightedExchangePrice,
)
from hivefeed.src.ProviderRegistry import ENV_PROVIDER_MODULES, ProviderRegistry


class StaticFetcher(BaseFetcher):
    """Fetcher returning a fixed price, raising, or stalling."""

    def __init__(self, name: str, price: float | None = None, error: Exception | None = None,
                 delay: float = 0.0) -> None:
        super().__init__()
        self.name = name
        self.exchange_name = name.capitalize()
        self.price = price
        self.error = error
        self.delay = delay
        self.calls = 0
        self.finished = False

    async def get_price(self) -> float:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished = True
        if self.error is not None:
            raise self.error
        return self.price


class SlowOnceFetcher(StaticFetcher):
    """Stalls on the first call only."""

    async def get_price(self) -> float:
        self.delay = 0.3 if self.calls == 0 else 0.0
        return await super().get_price()


def aggregate(aggregator: PriceAggregator) -> float:
    return asyncio.run(aggregator.get_aggregated_price())


class TestPriceAggregatorInit:
    """Test PriceAggregator initialization."""

    def test_default_values(self) -> None:
        """Default values should be reasonable."""
        agg = PriceAggregator([])
        assert agg.timeout == 5.0
        assert agg.max_retries == 3
        assert agg.retry_delay == 2.0
        assert agg.weights == {}

    def test_weights_are_case_insensitive(self) -> None:
        agg = PriceAggregator([], weights={"Binance": 2.0})
        assert agg.weights == {"binance": 2.0}

    def test_invalid_timeout(self) -> None:
        with pytest.raises(ValueError, match="timeout must be positive"):
            PriceAggregator([], timeout=0)

    def test_invalid_max_retries(self) -> None:
        with pytest.raises(ValueError, match="max_retries must be at least 1"):
            PriceAggregator([], max_retries=0)

    def test_invalid_retry_delay(self) -> None:
        with pytest.raises(ValueError, match="retry_delay must not be negative"):
            PriceAggregator([], retry_delay=-1)

    @pytest.mark.parametrize("weight", [math.nan, math.inf, -1.0])
    def test_invalid_weight(self, weight: float) -> None:
        with pytest.raises(ValueError, match="finite non-negative"):
            PriceAggregator([], weights={"mexc": weight})
        agg = PriceAggregator([])
        with pytest.raises(ValueError, match="finite non-negative"):
            agg.add_provider(StaticFetcher("mexc", 1.0), weight=weight)
        assert agg.providers == ()

    def test_non_finite_override_keeps_price_finite(self) -> None:
        """A NaN weight in the override never reaches the average."""
        registry = ProviderRegistry(
            static_descriptors=[],
            environ={ENV_PROVIDER_MODULES: '[{"name": "a", "locator": "m:A", "weight": NaN}]'},
        )
        agg = PriceAggregator(
            [StaticFetcher("a", 0.25), StaticFetcher("b", 0.27)], weights=registry.get_weights()
        )
        price = aggregate(agg)
        assert math.isfinite(price)
        assert price == 0.26

    def test_add_provider(self) -> None:
        agg = PriceAggregator([])
        provider = StaticFetcher("mexc", 1.0)
        agg.add_provider(provider, weight=2.5)
        assert agg.providers == (provider,)
        assert agg.weights == {"mexc": 2.5}

    def test_from_registry(self) -> None:
        """Providers and weights come from the registry."""
        registry = ProviderRegistry(static_descriptors=[], environ={})
        registry.register_provider("stub", lambda: StaticFetcher("stub", 1.0))
        assert aggregate(PriceAggregator.from_registry(registry)) == 1.0

        agg = PriceAggregator.from_registry(ProviderRegistry(environ={}), timeout=1.0)
        assert [p.name for p in agg.providers] == ["binance", "bitget", "huobi", "mexc", "probit"]
        assert agg.weights["mexc"] == 1.0
        assert agg.timeout == 1.0


class TestPriceAggregatorAggregation:
    """Test the aggregation of a successful round."""

    def test_equal_prices(self) -> None:
        agg = PriceAggregator([StaticFetcher(n, 10.0) for n in ("a", "b", "c")])
        assert aggregate(agg) == 10.0

    def test_plain_mean_rounded_once(self) -> None:
        """Rounding happens once, after averaging."""
        agg = PriceAggregator(
            [StaticFetcher("a", 9.999), StaticFetcher("b", 10.000), StaticFetcher("c", 10.002)]
        )
        assert aggregate(agg) == 10.0

    def test_weighted_average(self) -> None:
        """Any weight other than 1.0 switches to the weighted average."""
        agg = PriceAggregator(
            [StaticFetcher("a", 9.0), StaticFetcher("b", 12.0)],
            weights={"a": 2.0, "b": 1.0},
        )
        assert aggregate(agg) == 10.0

    def test_unit_weights_use_plain_mean(self) -> None:
        agg = PriceAggregator(
            [StaticFetcher("a", 9.0), StaticFetcher("b", 12.0)],
            weights={"a": 1.0, "b": 1.0},
        )
        assert aggregate(agg) == 10.5

    def test_zero_weight_is_honoured(self) -> None:
        agg = PriceAggregator(
            [StaticFetcher("a", 9.0), StaticFetcher("b", 12.0)],
            weights={"a": 0.0},
        )
        assert aggregate(agg) == 12.0

    def test_weight_by_exchange_name(self) -> None:
        """Weights also match the exchange display name."""
        alpha = StaticFetcher("a-usdt", 9.0)
        alpha.exchange_name = "Alpha"
        agg = PriceAggregator([alpha, StaticFetcher("b", 12.0)], weights={"ALPHA": 2.0})
        assert aggregate(agg) == 10.0

    def test_failed_providers_are_skipped(self) -> None:
        """One failing exchange does not affect the others."""
        agg = PriceAggregator(
            [
                StaticFetcher("a", 0.23),
                StaticFetcher("b", error=RuntimeError("boom")),
                StaticFetcher("c", 0.25),
            ]
        )
        assert aggregate(agg) == 0.24

    @pytest.mark.parametrize("bad", [0.0, -1.0, math.nan, math.inf, None])
    def test_invalid_price_counts_as_failure(self, bad: float | None) -> None:
        agg = PriceAggregator([StaticFetcher("a", bad), StaticFetcher("b", 0.5)])
        assert aggregate(agg) == 0.5

    def test_providers_run_concurrently(self) -> None:
        """A round takes as long as its slowest provider, not the sum."""
        providers = [StaticFetcher(n, 1.0, delay=0.2) for n in ("a", "b", "c", "d")]
        agg = PriceAggregator(providers, timeout=0.5, max_retries=1)
        assert aggregate(agg) == 1.0


class TestPriceAggregatorFailures:
    """Test empty rounds and retries."""

    def test_no_providers(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            aggregate(PriceAggregator([]))
        assert exc_info.value.code == ConfigurationError.NO_PROVIDERS

    def test_all_rounds_fail(self) -> None:
        """Exactly max_retries rounds with increasing delays between them."""
        providers = [StaticFetcher(n, error=RuntimeError("down")) for n in ("a", "b")]
        agg = PriceAggregator(providers, max_retries=3, retry_delay=2.0)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(AggregationError) as exc_info:
                aggregate(agg)

        assert exc_info.value.code == AggregationError.ALL_ROUNDS_EXHAUSTED
        assert "after 3 attempts" in str(exc_info.value)
        assert [p.calls for p in providers] == [3, 3]
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    def test_recovers_on_later_round(self) -> None:
        flaky = StaticFetcher("a", 0.3)
        flaky.get_price = AsyncMock(side_effect=[RuntimeError("down"), 0.3])
        agg = PriceAggregator([flaky], retry_delay=0.0)
        assert aggregate(agg) == 0.3
        assert flaky.get_price.await_count == 2

    def test_deadline_is_an_empty_round(self) -> None:
        """Missing the deadline is not an error until the retries run out."""
        slow = StaticFetcher("slow", 1.0, delay=0.3)
        agg = PriceAggregator([slow], timeout=0.05, max_retries=1)

        async def scenario() -> None:
            with pytest.raises(AggregationError, match="after 1 attempts"):
                await agg.get_aggregated_price()
            # The abandoned call is not cancelled and runs to completion.
            assert not slow.finished
            await asyncio.sleep(0.4)
            assert slow.finished

        asyncio.run(scenario())

    def test_deadline_then_success(self) -> None:
        """A round lost to the deadline is retried like any empty round."""
        provider = SlowOnceFetcher("a", 0.3)
        agg = PriceAggregator([provider], timeout=0.05, max_retries=2, retry_delay=0.01)
        assert aggregate(agg) == 0.3
        assert provider.calls == 2


class TestDetailedPrices:
    """Test get_detailed_prices()."""

    def test_never_raises(self) -> None:
        providers = [StaticFetcher(n, error=RuntimeError(f"{n} down")) for n in ("a", "b")]
        result = asyncio.run(PriceAggregator(providers).get_detailed_prices())

        assert result == [
            ExchangePrice("A", 0.0, False, "a down"),
            ExchangePrice("B", 0.0, False, "b down"),
        ]

    def test_mixed_outcomes(self) -> None:
        providers = [StaticFetcher("a", 0.23), StaticFetcher("b", error=ValueError("bad"))]
        result = asyncio.run(PriceAggregator(providers).get_detailed_prices())

        assert result[0].success and result[0].price == 0.23
        assert not result[1].success and result[1].error == "bad"
        assert result[0].to_dict() == {
            "exchange": "A",
            "price": 0.23,
            "success": True,
            "error": None,
        }


class TestWeightedAverage:
    """Test calculate_weighted_average()."""

    def test_weighted(self) -> None:
        prices = [
            WeightedExchangePrice("a", 9.0, True, weight=2.0),
            WeightedExchangePrice("b", 12.0, True, weight=1.0),
        ]
        assert PriceAggregator.calculate_weighted_average(prices) == 10.0

    def test_ignores_failed_entries(self) -> None:
        prices = [
            WeightedExchangePrice("a", 9.0, True, weight=1.0),
            WeightedExchangePrice("b", 0.0, False, "down", weight=5.0),
        ]
        assert PriceAggregator.calculate_weighted_average(prices) == 9.0

    def test_no_successful_prices(self) -> None:
        with pytest.raises(AggregationError):
            PriceAggregator.calculate_weighted_average(
                [WeightedExchangePrice("a", 0.0, False, "down")]
            )

    def test_zero_total_weight(self) -> None:
        with pytest.raises(AggregationError) as exc_info:
            PriceAggregator.calculate_weighted_average(
                [WeightedExchangePrice("a", 9.0, True, weight=0.0)]
            )
        assert exc_info.value.code == AggregationError.ZERO_TOTAL_WEIGHT
