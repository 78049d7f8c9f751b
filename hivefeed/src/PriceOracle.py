"""PriceOracle: Long-running HIVE price feed daemon.

Publishes immediately on start and then once per update interval. A failed
publish is logged and retried on the next interval; SIGINT and SIGTERM stop
the loop after the current cycle.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import TYPE_CHECKING, Any

from .fetchers import BaseFetcher

if TYPE_CHECKING:
    from .FeedPublisher import FeedPublisher

logger = logging.getLogger(__name__)

# Supported update intervals, in seconds.
UPDATE_INTERVALS: dict[str, float] = {
    "3min": 3 * 60,
    "10min": 10 * 60,
    "30min": 30 * 60,
    "1hour": 60 * 60,
}
DEFAULT_UPDATE_INTERVAL = "3min"


def parse_update_interval(value: str | None) -> float:
    """Seconds for an interval name; unknown or empty names mean 3min."""
    key = (value or "").strip().lower()
    if key not in UPDATE_INTERVALS:
        if key:
            logger.warning(
                f"Unknown update interval '{value}', using {DEFAULT_UPDATE_INTERVAL}"
            )
        key = DEFAULT_UPDATE_INTERVAL
    return UPDATE_INTERVALS[key]


class PriceOracle:
    """Drives the feed publisher on a fixed interval.

    :ivar publisher: Publisher doing the actual work.
    :ivar update_interval: Seconds between publishes.
    """

    def __init__(self, publisher: FeedPublisher, update_interval: float) -> None:
        """Initialize the daemon.

        :param publisher: Initialized-or-not feed publisher.
        :param update_interval: Seconds between publishes.
        :raises ValueError: If the interval is not positive.
        """
        if update_interval <= 0:
            raise ValueError("update_interval must be positive")
        self.publisher = publisher
        self.update_interval = update_interval
        self._stop = asyncio.Event()

    def stop(self) -> None:
        """Ask the loop to exit after the current cycle."""
        if not self._stop.is_set():
            logger.info("Stop requested, finishing current cycle")
        self._stop.set()

    async def run_once(self) -> Any:
        """Publish one price. Errors propagate."""
        self.publisher.initialize()
        try:
            return await self.publisher.publish_feed_price()
        finally:
            await BaseFetcher.close_shared_client()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                # Not available on this platform or outside the main thread.
                logger.debug(f"Cannot install handler for {sig.name}")

    async def run(self) -> None:
        """Publish now and then every ``update_interval`` seconds until stopped."""
        self._install_signal_handlers()
        self.publisher.initialize()
        logger.info(f"Price feed started, publishing every {self.update_interval:.0f}s")

        try:
            while not self._stop.is_set():
                try:
                    await self.publisher.publish_feed_price()
                except Exception as e:
                    logger.error(f"Price publish failed: {e}")

                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.update_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            await BaseFetcher.close_shared_client()
            logger.info("Price feed stopped")
