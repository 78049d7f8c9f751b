"""RoflUtility: Interface of the transaction signer used for publishing."""

from abc import ABC, abstractmethod
from typing import Any

from web3.types import TxParams


class RoflUtility(ABC):
    """Abstract signer the feed publisher hands transactions to.

    Implementations either forward to the ROFL appd daemon, which signs with
    the enclave key, or sign locally on a development network.
    """

    @abstractmethod
    def submit_tx(self, tx: TxParams) -> Any:
        """Sign and submit a transaction.

        :param tx: Transaction parameters built from the contract call.
        :returns: Submission result.
        """
