"""FeedPublisher: Publish the aggregated HIVE price to the aggregator contract.

One publish:
    1. Aggregate a price from the exchanges
    2. Re-validate it
    3. Scale it to the contract's decimals (exact decimal arithmetic)
    4. Build ``submitObservation`` for the next round and hand it to the
       signer, through the RPC failover wrapper
"""

from __future__ import annotations

import asyncio
import logging
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from web3 import Web3

from .ContractUtility import SIMPLE_AGGREGATOR_ABI
from .errors import PriceValidationError
from .price_validation import is_valid_price

if TYPE_CHECKING:
    from .PriceAggregator import PriceAggregator
    from .RoflUtility import RoflUtility
    from .RpcFailover import RpcFailover

logger = logging.getLogger(__name__)


def scale_price(price: float, decimals: int) -> int:
    """Convert a price to the contract's fixed-point integer.

    :param price: Price in USD.
    :param decimals: Number of decimals stored on-chain.
    :returns: ``price * 10**decimals``, computed without float error.

    .. code-block:: python

        >>> scale_price(0.231, 10)
        2310000000
    """
    scaled = Decimal(repr(price)).scaleb(decimals)
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


class FeedPublisher:
    """Pushes aggregated prices on-chain.

    :ivar aggregator: Source of the aggregated price.
    :ivar failover: RPC failover wrapper used for every node call.
    :ivar rofl_utility: Signer that submits the transaction.
    :ivar aggregator_address: Checksummed aggregator contract address.
    """

    def __init__(
        self,
        aggregator: PriceAggregator,
        failover: RpcFailover,
        rofl_utility: RoflUtility,
        aggregator_address: str,
    ) -> None:
        """Initialize the publisher.

        :raises ValueError: If the contract address is not a valid address.
        """
        self.aggregator = aggregator
        self.failover = failover
        self.rofl_utility = rofl_utility
        self.aggregator_address = Web3.to_checksum_address(aggregator_address)

    def initialize(self) -> None:
        """Connect the failover wrapper to its first node."""
        self.failover.initialize()

    def _submit_observation(self, w3: Web3, price: float, observed_at: int) -> Any:
        contract = w3.eth.contract(address=self.aggregator_address, abi=SIMPLE_AGGREGATOR_ABI)

        decimals = contract.functions.decimals().call()
        round_id = contract.functions.latestRoundData().call()[0]
        answer = scale_price(price, decimals)

        tx_params = contract.functions.submitObservation(
            round_id + 1, answer, observed_at, observed_at
        ).build_transaction({"gasPrice": w3.eth.gas_price})

        result = self.rofl_utility.submit_tx(tx_params)
        logger.info(
            f"Round {round_id + 1} submitted (price=${price:.3f}, "
            f"answer={answer}, decimals={decimals}). Result: {result}"
        )
        return result

    async def publish_feed_price(self) -> Any:
        """Aggregate a price and submit it as the next round.

        :returns: Signer result of the submission.
        :raises PriceValidationError: If the aggregated price is unusable.
        :raises AggregationError: If no exchange produced a price.
        """
        price = await self.aggregator.get_aggregated_price()
        if not is_valid_price(price):
            raise PriceValidationError(
                f"Aggregated price failed validation: {price}",
                PriceValidationError.INVALID_DATA,
                operation="publish_feed_price",
                invalid_data=price,
            )

        observed_at = int(time.time())
        logger.info(f"Publishing HIVE price ${price:.3f} to {self.aggregator_address}")

        return await asyncio.to_thread(
            self.failover.execute,
            lambda w3: self._submit_observation(w3, price, observed_at),
            "submit_observation",
        )
