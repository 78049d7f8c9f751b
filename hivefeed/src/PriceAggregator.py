"""PriceAggregator: Concurrent multi-exchange price aggregation.

Algorithm:
    1. Fail with a configuration error if there are no providers
    2. Query every provider concurrently; one failure never affects the others
    3. Stop waiting once the round deadline passes (an empty round, not an error)
    4. Combine the successful prices: weighted average if any provider weight
       differs from 1.0, plain mean otherwise
    5. Round once, to three decimals
    6. If no provider succeeded, retry the round after 2s, 4s, ... up to
       max_retries rounds, then raise AggregationError

.. code-block:: python

    >>> aggregator = PriceAggregator.from_registry(ProviderRegistry())
    >>> price = await aggregator.get_aggregated_price()
    >>> price
    0.231
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .errors import AggregationError, ConfigurationError
from .price_validation import is_valid_price, round_to_three_decimals

if TYPE_CHECKING:
    from .fetchers import BaseFetcher
    from .ProviderRegistry import ProviderRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExchangePrice:
    """Outcome of one provider in one round.

    :ivar exchange: Exchange display name.
    :ivar price: Price on success, 0.0 on failure.
    :ivar success: Whether the provider produced a valid price.
    :ivar error: Failure message, if any.
    """

    exchange: str
    price: float
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "exchange": self.exchange,
            "price": self.price,
            "success": self.success,
            "error": self.error,
        }


@dataclass(frozen=True)
class WeightedExchangePrice(ExchangePrice):
    """ExchangePrice carrying its configured weight.

    :ivar weight: Configured weight (non-negative).
    :ivar normalized_weight: weight / total weight, once computed.
    """

    weight: float = 1.0
    normalized_weight: float | None = None


def _check_weight(name: str, weight: float) -> None:
    if not math.isfinite(weight) or weight < 0:
        raise ValueError(f"weight for {name} must be a finite non-negative number")


class PriceAggregator:
    """Aggregates the HIVE price from several exchanges.

    :ivar weights: Provider weights keyed by lower-case provider name.
    :ivar timeout: Deadline for one round in seconds.
    :ivar max_retries: Maximum number of rounds.
    :ivar retry_delay: Base delay between rounds in seconds (multiplied by
        the attempt number).
    """

    DEFAULT_TIMEOUT = 5.0
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_RETRY_DELAY = 2.0

    def __init__(
        self,
        providers: list[BaseFetcher],
        weights: dict[str, float] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        """Initialize the aggregator.

        :param providers: Price providers to query each round.
        :param weights: Optional weight per provider name (default 1.0 each).
        :param timeout: Round deadline in seconds (default 5).
        :param max_retries: Rounds attempted before giving up (default 3).
        :param retry_delay: Base wait between rounds in seconds (default 2).
        :raises ValueError: If parameters are invalid.
        """
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if retry_delay < 0:
            raise ValueError("retry_delay must not be negative")
        for name, weight in (weights or {}).items():
            _check_weight(name, weight)

        self._providers: list[BaseFetcher] = list(providers)
        self.weights = {k.lower(): w for k, w in (weights or {}).items()}
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        # Rounds abandoned at the deadline keep running; hold them until done.
        self._pending_rounds: set[asyncio.Future] = set()

    @classmethod
    def from_registry(cls, registry: ProviderRegistry, **kwargs: Any) -> PriceAggregator:
        """Build an aggregator from the registry's enabled providers and weights."""
        return cls(registry.create_providers(), weights=registry.get_weights(), **kwargs)

    @property
    def providers(self) -> tuple[BaseFetcher, ...]:
        return tuple(self._providers)

    def add_provider(self, provider: BaseFetcher, weight: float | None = None) -> None:
        """Add a provider, optionally with a weight.

        :raises ValueError: If the weight is negative or not finite.
        """
        if weight is not None:
            _check_weight(provider.name, weight)
            self.weights[provider.name.lower()] = weight
        self._providers.append(provider)

    async def get_aggregated_price(self) -> float:
        """Aggregate one HIVE price from all providers.

        :returns: Aggregated price rounded to three decimals.
        :raises ConfigurationError: If no providers are configured.
        :raises AggregationError: If every round came back empty.
        """
        if not self._providers:
            raise ConfigurationError(
                "No price providers configured",
                ConfigurationError.NO_PROVIDERS,
                operation="get_aggregated_price",
            )

        for attempt in range(1, self.max_retries + 1):
            results = await self._fetch_round()
            successful = [(p, ep) for p, ep in results if ep.success]

            if successful:
                price = self._calculate_final_price(successful)
                logger.info(
                    f"Aggregated HIVE price ${price:.3f} from "
                    f"{len(successful)}/{len(self._providers)} exchanges: "
                    + ", ".join(f"{ep.exchange}=${ep.price:.3f}" for _, ep in successful)
                )
                return price

            logger.warning(
                f"Round {attempt}/{self.max_retries}: no exchange returned a price"
            )
            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * attempt)

        raise AggregationError(
            f"Failed to obtain HIVE price after {self.max_retries} attempts. "
            "All exchanges failed or timed out.",
            AggregationError.ALL_ROUNDS_EXHAUSTED,
            operation="get_aggregated_price",
        )

    async def get_detailed_prices(self) -> list[ExchangePrice]:
        """Query every provider and report each outcome, without aggregating.

        Never raises; failures are reported per entry.

        :returns: One ExchangePrice per provider, in provider order.
        """
        results = await asyncio.gather(*(self._fetch_one(p) for p in self._providers))
        return list(results)

    async def _fetch_round(self) -> list[tuple[BaseFetcher, ExchangePrice]]:
        """Run one round against the deadline.

        The deadline only stops the waiting; provider calls already in flight
        are left to finish (or time out) on their own.
        """
        providers = list(self._providers)
        round_task = asyncio.gather(*(self._fetch_one(p) for p in providers))
        done, _ = await asyncio.wait({round_task}, timeout=self.timeout)

        if round_task not in done:
            logger.warning(
                f"Price round exceeded {self.timeout:.1f}s deadline, treating as empty"
            )
            self._pending_rounds.add(round_task)
            round_task.add_done_callback(self._pending_rounds.discard)
            return []

        return list(zip(providers, round_task.result(), strict=True))

    async def _fetch_one(self, provider: BaseFetcher) -> ExchangePrice:
        """Fetch one provider's price, turning any failure into an entry."""
        exchange = getattr(provider, "exchange_name", None) or "Unknown"
        try:
            price = await provider.get_price()
            exchange = provider.exchange_name or exchange
            if not is_valid_price(price):
                raise ValueError(f"Invalid price received: {price}")
            logger.debug(f"[{exchange}] ${price:.3f}")
            return ExchangePrice(exchange=exchange, price=float(price), success=True)
        except Exception as e:
            exchange = getattr(provider, "exchange_name", None) or exchange
            logger.warning(f"[{exchange}] Price fetch failed: {e}")
            return ExchangePrice(exchange=exchange, price=0.0, success=False, error=str(e))

    def _weight_for(self, provider: BaseFetcher, ep: ExchangePrice) -> float:
        for key in (provider.name.lower(), ep.exchange.lower()):
            if key in self.weights:
                return self.weights[key]
        return 1.0

    def _calculate_final_price(
        self, successful: list[tuple[BaseFetcher, ExchangePrice]]
    ) -> float:
        """Combine successful prices, weighted if any weight is not 1.0."""
        weighted = [
            WeightedExchangePrice(
                exchange=ep.exchange,
                price=ep.price,
                success=ep.success,
                error=ep.error,
                weight=self._weight_for(provider, ep),
            )
            for provider, ep in successful
        ]

        if any(wp.weight != 1.0 for wp in weighted):
            return self.calculate_weighted_average(weighted)

        mean = math.fsum(wp.price for wp in weighted) / len(weighted)
        return round_to_three_decimals(mean)

    @staticmethod
    def calculate_weighted_average(prices: list[WeightedExchangePrice]) -> float:
        """Weighted average of the successful prices, rounded once.

        :param prices: Weighted prices; failed entries are ignored.
        :returns: sum(price * weight) / sum(weight), rounded to three decimals.
        :raises AggregationError: If there is no successful price or the
            total weight is zero.

        .. code-block:: python

            >>> PriceAggregator.calculate_weighted_average([
            ...     WeightedExchangePrice("a", 9.0, True, weight=2.0),
            ...     WeightedExchangePrice("b", 12.0, True, weight=1.0),
            ... ])
            10.0
        """
        successful = [p for p in prices if p.success]
        if not successful:
            raise AggregationError(
                "No successful prices for weighted average calculation",
                AggregationError.ALL_ROUNDS_EXHAUSTED,
                operation="weighted_average",
            )

        total_weight = math.fsum(p.weight for p in successful)
        if total_weight == 0:
            raise AggregationError(
                "Total weight cannot be zero",
                AggregationError.ZERO_TOTAL_WEIGHT,
                operation="weighted_average",
            )

        normalized = [
            WeightedExchangePrice(
                exchange=p.exchange,
                price=p.price,
                success=p.success,
                error=p.error,
                weight=p.weight,
                normalized_weight=p.weight / total_weight,
            )
            for p in successful
        ]
        for p in normalized:
            logger.debug(f"[{p.exchange}] weight {p.weight} ({p.normalized_weight:.3f})")

        weighted_sum = math.fsum(p.price * p.weight for p in normalized)
        return round_to_three_decimals(weighted_sum / total_weight)
