#!/usr/bin/env python3
"""HIVE Price Feed.

Fetches the HIVE/USD price from several exchanges, aggregates it and
publishes it to an on-chain aggregator contract.

Configure with CLI flags or the matching environment variables.
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from .src.ContractUtility import ContractUtility
from .src.FeedPublisher import FeedPublisher
from .src.fetchers import BaseFetcher
from .src.PriceAggregator import PriceAggregator
from .src.PriceOracle import UPDATE_INTERVALS, PriceOracle, parse_update_interval
from .src.ProviderRegistry import ProviderRegistry
from .src.RoflUtility import RoflUtility
from .src.RoflUtilityAppd import RoflUtilityAppd
from .src.RoflUtilityLocalnet import RoflUtilityLocalnet
from .src.RpcFailover import RpcFailover

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_rpc_nodes(value: str | None, network: str) -> list[str]:
    """Parse a comma-separated node list, defaulting to the network's URL.

    :param value: Comma-separated URLs, or None/empty.
    :param network: Network name used for the default.
    :returns: Non-empty list of node URLs.
    """
    nodes = [n.strip() for n in (value or "").split(",") if n.strip()]
    return nodes or [ContractUtility.default_rpc_url(network)]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="HIVE Price Feed: multi-exchange HIVE/USD price publisher",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Print the current price from every exchange and exit
  python -m hivefeed.main --prices

  # Publish once to a testnet aggregator
  python -m hivefeed.main --network sapphire-testnet \\
      --aggregator-address 0x... --once

  # Run the daemon against two RPC nodes, every 10 minutes
  python -m hivefeed.main --rpc-nodes https://a.example,https://b.example \\
      --aggregator-address 0x... --interval 10min

Environment variables (CLI args take precedence):
  NETWORK, RPC_NODES, AGGREGATOR_ADDRESS, FEED_INTERVAL, ROUND_TIMEOUT,
  RPC_TIMEOUT, ROFL_APPD_URL, PRICE_PROVIDER_MODULES
""",
    )

    parser.add_argument(
        "--network",
        type=str,
        help="Network to connect to (sapphire, sapphire-testnet, sapphire-localnet)",
        default=os.environ.get("NETWORK") or "sapphire-localnet",
    )

    parser.add_argument(
        "--rpc-nodes",
        dest="rpc_nodes",
        type=str,
        help="Comma-separated RPC node URLs, tried in order (default: network URL)",
        default=os.environ.get("RPC_NODES"),
    )

    parser.add_argument(
        "--aggregator-address",
        dest="aggregator_address",
        type=str,
        help="Address of the aggregator contract receiving observations",
        default=os.environ.get("AGGREGATOR_ADDRESS"),
    )

    parser.add_argument(
        "--interval",
        type=str,
        help=f"Update interval: {', '.join(UPDATE_INTERVALS)} (default: 3min)",
        default=os.environ.get("FEED_INTERVAL") or "3min",
    )

    parser.add_argument(
        "--round-timeout",
        dest="round_timeout",
        type=float,
        help="Deadline for one aggregation round in seconds (default: 5.0)",
        default=os.environ.get("ROUND_TIMEOUT") or "5.0",
    )

    parser.add_argument(
        "--rpc-timeout",
        dest="rpc_timeout",
        type=float,
        help="Timeout for RPC requests in seconds (default: 2.0)",
        default=os.environ.get("RPC_TIMEOUT") or "2.0",
    )

    parser.add_argument(
        "--appd-url",
        dest="appd_url",
        type=str,
        help="ROFL appd URL or socket path (default: /run/rofl-appd.sock)",
        default=os.environ.get("ROFL_APPD_URL") or "",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Publish a single price and exit",
    )

    parser.add_argument(
        "--prices",
        action="store_true",
        help="Print per-exchange prices as JSON and exit (no publishing)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    return parser


async def print_detailed_prices(aggregator: PriceAggregator) -> None:
    """Print every exchange's outcome as JSON."""
    try:
        prices = await aggregator.get_detailed_prices()
    finally:
        await BaseFetcher.close_shared_client()
    print(json.dumps([p.to_dict() for p in prices], indent=2))


def build_publisher(args: argparse.Namespace, aggregator: PriceAggregator) -> FeedPublisher:
    """Wire the failover wrapper, signer and publisher from CLI arguments."""
    failover = RpcFailover(
        parse_rpc_nodes(args.rpc_nodes, args.network),
        timeout=args.rpc_timeout,
        connect=lambda url, timeout: ContractUtility.connect(url, timeout, args.network),
    )

    rofl_utility: RoflUtility
    if args.network == "sapphire-localnet":
        rofl_utility = RoflUtilityLocalnet(lambda: failover.connection)
    else:
        rofl_utility = RoflUtilityAppd(args.appd_url)

    return FeedPublisher(aggregator, failover, rofl_utility, args.aggregator_address)


def main() -> None:
    """Main entry point for the HIVE Price Feed CLI."""
    parser = build_parser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.round_timeout <= 0:
        parser.error("--round-timeout must be positive")
    if args.rpc_timeout <= 0:
        parser.error("--rpc-timeout must be positive")

    try:
        aggregator = PriceAggregator.from_registry(
            ProviderRegistry(), timeout=args.round_timeout
        )
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)

    if args.prices:
        asyncio.run(print_detailed_prices(aggregator))
        return

    if not args.aggregator_address:
        parser.error("--aggregator-address (or AGGREGATOR_ADDRESS) is required")

    update_interval = parse_update_interval(args.interval)

    # Log configuration
    logger.info("=" * 60)
    logger.info("HIVE Price Feed")
    logger.info("=" * 60)
    logger.info(f"Network:           {args.network}")
    logger.info(f"RPC Nodes:         {', '.join(parse_rpc_nodes(args.rpc_nodes, args.network))}")
    logger.info(f"Aggregator:        {args.aggregator_address}")
    logger.info(f"Exchanges:         {', '.join(p.name for p in aggregator.providers)}")
    logger.info(f"Update Interval:   {update_interval:.0f}s")
    logger.info(f"Round Timeout:     {args.round_timeout}s")
    logger.info(f"RPC Timeout:       {args.rpc_timeout}s")
    logger.info("=" * 60)

    try:
        price_oracle = PriceOracle(build_publisher(args, aggregator), update_interval)
        if args.once:
            asyncio.run(price_oracle.run_once())
        else:
            asyncio.run(price_oracle.run())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
