"""ContractUtility: Web3 connections and the aggregator contract ABI."""

from __future__ import annotations

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.middleware import SignAndSendRawMiddlewareBuilder

# Well-known funded account of the localnet image.
LOCALNET_TEST_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

# Subset of the SimpleAggregator ABI needed to publish observations.
SIMPLE_AGGREGATOR_ABI: list[dict] = [
    {
        "type": "function",
        "name": "decimals",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "type": "function",
        "name": "latestRoundData",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "roundId", "type": "uint80"},
            {"name": "answer", "type": "int256"},
            {"name": "startedAt", "type": "uint256"},
            {"name": "updatedAt", "type": "uint256"},
            {"name": "answeredInRound", "type": "uint80"},
        ],
    },
    {
        "type": "function",
        "name": "submitObservation",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "_roundId", "type": "uint80"},
            {"name": "_answer", "type": "int256"},
            {"name": "_startedAt", "type": "uint256"},
            {"name": "_updatedAt", "type": "uint256"},
        ],
        "outputs": [],
    },
]


class ContractUtility:
    """Utility for Web3 connections.

    :cvar NETWORKS: Default RPC URL per network name.
    """

    NETWORKS: dict[str, str] = {
        "sapphire": "https://sapphire.oasis.io",
        "sapphire-testnet": "https://testnet.sapphire.oasis.io",
        "sapphire-localnet": "http://localhost:8545",
    }

    @classmethod
    def default_rpc_url(cls, network_name: str) -> str:
        """RPC URL for a network name; unknown names are taken as URLs."""
        return cls.NETWORKS.get(network_name, network_name)

    @staticmethod
    def connect(url: str, timeout: float, network_name: str | None = None) -> Web3:
        """Build a Web3 connection to one RPC node.

        :param url: Node URL.
        :param timeout: HTTP request timeout in seconds.
        :param network_name: Network name; on localnet the test account is
            installed as the default signer.
        :returns: Configured Web3 instance.
        """
        w3 = Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": timeout}))
        if network_name == "sapphire-localnet":
            account: LocalAccount = Account.from_key(LOCALNET_TEST_KEY)
            w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(account))
            w3.eth.default_account = account.address
        return w3
