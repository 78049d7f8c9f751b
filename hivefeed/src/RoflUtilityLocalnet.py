"""RoflUtilityLocalnet: Local signer for development networks."""

from __future__ import annotations

from typing import Any, Callable

import cbor2
from web3 import Web3
from web3.types import TxParams

from .RoflUtility import RoflUtility

# CBOR encoding of {"ok": b""}, the appd success marker.
OK_RESULT_CBOR = "a1626f6b40"


class RoflUtilityLocalnet(RoflUtility):
    """Signer that sends transactions straight through Web3.

    Expects a connection carrying a signing middleware, such as the one
    :meth:`ContractUtility.connect` builds for ``sapphire-localnet``. The
    connection is looked up on every submission so that it follows RPC
    node failover.
    """

    def __init__(self, get_w3: Callable[[], Web3]) -> None:
        """Initialize the localnet signer.

        :param get_w3: Returns the Web3 connection to submit through.
        """
        self._get_w3 = get_w3

    @property
    def w3(self) -> Web3:
        return self._get_w3()

    def submit_tx(self, tx: TxParams) -> Any:
        """Send a transaction and wait for its receipt.

        :param tx: Transaction parameters.
        :returns: Dict with the receipt, plus an appd-style ``data`` marker
            when the transaction succeeded.
        """
        tx_hash = self.w3.eth.send_transaction(tx)
        tx_receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)

        if tx_receipt["status"] == 1:
            return {"data": cbor2.loads(bytes.fromhex(OK_RESULT_CBOR)), "tx_receipt": tx_receipt}
        return {"tx_receipt": tx_receipt}
