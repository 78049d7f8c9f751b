"""RpcFailover: Rotate between JSON-RPC nodes when one stops answering.

The wrapper owns one live connection at a time. A successful call leaves
the current node in place; a recoverable failure moves to the next node
(wrapping around), rebuilds the connection and retries after a jittered
exponential backoff.

.. code-block:: python

    >>> failover = RpcFailover(["https://a.example", "https://b.example"])
    >>> failover.initialize()
    >>> failover.execute(lambda w3: w3.eth.block_number, "block_number")
    4711
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, TypeVar

import requests

from .ContractUtility import ContractUtility
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_recoverable_rpc_error(error: BaseException) -> bool:
    """Whether an RPC failure is worth retrying on another node.

    Timeouts, connection failures and bad HTTP statuses are recoverable.
    Everything else (contract reverts, encoding errors, ...) is not.
    """
    return isinstance(
        error,
        (
            requests.exceptions.Timeout,
            requests.exceptions.ConnectionError,
            requests.exceptions.HTTPError,
            requests.exceptions.RequestException,
            TimeoutError,
        ),
    )


class RpcFailover:
    """Executes operations against a list of RPC nodes with failover.

    Not thread-safe; a single owner is expected to drive it.

    :ivar endpoints: Node URLs, in rotation order.
    :ivar timeout: Per-request timeout handed to ``connect``, in seconds.
    :ivar max_retries: Total attempts per ``execute`` call.
    :ivar base_retry_delay: Base backoff in seconds.
    :ivar max_retry_delay: Backoff cap in seconds.
    """

    def __init__(
        self,
        endpoints: list[str],
        *,
        timeout: float = 2.0,
        max_retries: int | None = None,
        base_retry_delay: float = 0.5,
        max_retry_delay: float = 5.0,
        is_recoverable: Callable[[BaseException], bool] = is_recoverable_rpc_error,
        connect: Callable[[str, float], Any] = ContractUtility.connect,
    ) -> None:
        """Initialize the failover wrapper.

        :param endpoints: Non-empty list of node URLs.
        :param timeout: Request timeout in seconds (default 2).
        :param max_retries: Attempts per call (default: twice the node count).
        :param base_retry_delay: Base backoff in seconds (default 0.5).
        :param max_retry_delay: Backoff cap in seconds (default 5).
        :param is_recoverable: Predicate deciding whether to rotate and retry.
        :param connect: Factory building a connection from ``(url, timeout)``.
        :raises ValueError: If the endpoint list is empty or limits are invalid.
        """
        if not endpoints:
            raise ValueError("At least one RPC endpoint is required")
        if max_retries is not None and max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if base_retry_delay < 0 or max_retry_delay < 0:
            raise ValueError("retry delays must not be negative")

        self.endpoints = list(endpoints)
        self.timeout = timeout
        self.max_retries = max_retries if max_retries is not None else 2 * len(self.endpoints)
        self.base_retry_delay = base_retry_delay
        self.max_retry_delay = max_retry_delay
        self._is_recoverable = is_recoverable
        self._connect = connect

        self._index = 0
        self._connection: Any = None

    @property
    def connection(self) -> Any:
        return self._connection

    @property
    def current_endpoint(self) -> str:
        return self.endpoints[self._index]

    @property
    def current_index(self) -> int:
        return self._index

    def initialize(self) -> None:
        """Connect to the current node."""
        self._connection = self._connect(self.current_endpoint, self.timeout)
        logger.info(
            f"Connected to RPC node {self.current_endpoint} "
            f"({self._index + 1}/{len(self.endpoints)})"
        )

    def _rotate(self) -> None:
        previous = self.current_endpoint
        self._index = (self._index + 1) % len(self.endpoints)
        logger.warning(f"Switching RPC node {previous} -> {self.current_endpoint}")
        self._connection = self._connect(self.current_endpoint, self.timeout)

    def _backoff(self, attempt: int) -> float:
        delay = self.base_retry_delay * (2**attempt) + random.uniform(0, 0.1)
        return min(delay, self.max_retry_delay)

    def execute(self, operation: Callable[[Any], T], label: str = "operation") -> T:
        """Run ``operation(connection)`` with node failover.

        :param operation: Callable receiving the live connection.
        :param label: Name used in log messages.
        :returns: Whatever the operation returns.
        :raises ConfigurationError: NOT_INITIALIZED if called before
            :meth:`initialize`.
        :raises Exception: The operation's own error if it is not
            recoverable, or the last error once all attempts are used.
        """
        if self._connection is None:
            raise ConfigurationError(
                "RPC failover used before initialize()",
                ConfigurationError.NOT_INITIALIZED,
                operation=label,
            )

        attempt = 0
        while True:
            try:
                return operation(self._connection)
            except Exception as e:
                if not self._is_recoverable(e):
                    logger.error(f"{label} failed on {self.current_endpoint}: {e}")
                    raise

                attempt += 1
                logger.warning(
                    f"{label} failed on {self.current_endpoint}: {e} "
                    f"(attempt {attempt}/{self.max_retries})"
                )
                if attempt >= self.max_retries:
                    logger.error(f"{label} failed on all RPC nodes after {attempt} attempts")
                    raise

                self._rotate()
                time.sleep(self._backoff(attempt))
