"""RoflUtilityAppd: Sign and submit transactions through the ROFL appd daemon."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import cbor2
import httpx
from web3.types import TxParams

from .RoflUtility import RoflUtility

logger = logging.getLogger(__name__)


class AppdError(RuntimeError):
    """Raised when the appd cannot be reached or keeps rejecting a request."""


def _strip_hex(value: Any) -> str:
    text = str(value)
    return (text[2:] if text.startswith("0x") else text).lower()


class RoflUtilityAppd(RoflUtility):
    """Signer backed by the ROFL appd daemon.

    Talks to the appd over its Unix domain socket, or over HTTP when ``url``
    is an http(s) URL. Every request is retried with capped backoff, since
    the daemon may still be starting when the feed comes up.

    :cvar ROFL_SOCKET_PATH: Default Unix socket path for appd.
    :ivar url: Optional HTTP URL or socket path override.
    :ivar max_retries: Attempts per request.
    :ivar backoff_base: First retry delay in seconds.
    :ivar backoff_max: Retry delay cap in seconds.
    """

    ROFL_SOCKET_PATH = "/run/rofl-appd.sock"

    def __init__(
        self,
        url: str = "",
        *,
        max_retries: int = 30,
        backoff_base: float = 1.0,
        backoff_max: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the appd signer.

        :param url: Optional URL or socket path. Empty uses the default socket.
        :param max_retries: Attempts per request (default 30).
        :param backoff_base: First retry delay in seconds (default 1).
        :param backoff_max: Retry delay cap in seconds (default 5).
        :param transport: Explicit transport, mostly for tests.
        """
        self.url = url
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self.url if self.url.startswith("http") else "http://localhost"

    def _build_transport(self) -> httpx.BaseTransport | None:
        if self._transport is not None:
            return self._transport
        if self.url.startswith("http"):
            return None
        socket_path = self.url or self.ROFL_SOCKET_PATH
        logger.debug(f"Using unix domain socket: {socket_path}")
        return httpx.HTTPTransport(uds=socket_path)

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send one request to appd, retrying until it succeeds.

        :param method: HTTP method.
        :param path: API endpoint path.
        :returns: Successful HTTP response.
        :raises AppdError: If every attempt failed.
        """
        with httpx.Client(transport=self._build_transport()) as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    response = client.request(
                        method, self.base_url + path, timeout=None, **kwargs
                    )
                    if response.is_success:
                        return response
                    logger.warning(
                        f"appd {method} {path} failed: {response.status_code} "
                        f"{response.reason_phrase} (attempt {attempt}/{self.max_retries})"
                    )
                except httpx.RequestError as exc:
                    logger.warning(
                        f"appd {method} {path} error: {exc} "
                        f"(attempt {attempt}/{self.max_retries})"
                    )
                if attempt < self.max_retries:
                    time.sleep(min(self.backoff_base * 1.5 ** (attempt - 1), self.backoff_max))

        raise AppdError(f"appd {method} {path} failed after {self.max_retries} attempts")

    def submit_tx(self, tx: TxParams) -> Any:
        """Submit a transaction via the appd sign-submit endpoint.

        :param tx: Transaction parameters including data, to, gas, value.
        :returns: appd result, with its ``data`` field CBOR-decoded.
        """
        payload = {
            "tx": {
                "kind": "eth",
                "data": {
                    "gas_limit": int(tx["gas"]),
                    "to": _strip_hex(tx["to"]) if tx.get("to") else "",
                    "value": str(tx.get("value", 0)),
                    "data": _strip_hex(tx["data"]),
                },
            },
            "encrypted": False,
        }
        logger.debug(f"Submitting transaction: {json.dumps(payload)}")

        result = self._request("POST", "/rofl/v1/tx/sign-submit", json=payload).json()
        if result.get("data"):
            result["data"] = cbor2.loads(bytes.fromhex(result["data"]))
        return result
