"""IPFS gateway client — ordered gateway fallback with a uniform timeout."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

import httpx

from notice_vault.core.config import settings
from notice_vault.services.errors import AllGatewaysExhaustedError

logger = logging.getLogger(__name__)

# Statuses worth retrying on the same gateway before moving on
_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class IpfsGatewayClient:
    """
    Download content by hash from the first gateway that answers 200.

    A non-200 answer, a timeout or a transport error moves on to the next
    gateway. With ``attempts_per_gateway > 1`` transient failures (transport
    errors, 429/5xx) are retried on the same gateway with exponential
    backoff first; a 404 is never retried.
    """

    def __init__(
        self,
        gateways: Optional[Sequence[str]] = None,
        *,
        timeout: Optional[float] = None,
        attempts_per_gateway: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.gateways = list(gateways if gateways is not None else settings.ipfs_gateways)
        self.timeout = timeout if timeout is not None else settings.ipfs_timeout_seconds
        self.attempts_per_gateway = max(
            1,
            attempts_per_gateway
            if attempts_per_gateway is not None
            else settings.ipfs_attempts_per_gateway,
        )
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.ipfs_retry_backoff_seconds
        )
        self._client = client
        self._sleep = sleep

    @staticmethod
    def gateway_url(gateway: str, ipfs_hash: str) -> str:
        return f"{gateway.rstrip('/')}/{ipfs_hash}"

    def download(self, ipfs_hash: str) -> bytes:
        """
        Return the raw bytes for *ipfs_hash*.

        Raises
        ------
        AllGatewaysExhaustedError
            Every gateway failed.
        """
        if self._client is not None:
            return self._download_with(self._client, ipfs_hash)
        with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
            return self._download_with(client, ipfs_hash)

    def _download_with(self, client: httpx.Client, ipfs_hash: str) -> bytes:
        failures: list[str] = []

        for gateway in self.gateways:
            url = self.gateway_url(gateway, ipfs_hash)

            for attempt in range(1, self.attempts_per_gateway + 1):
                logger.info("Trying %s (attempt %d)", url, attempt)
                retryable = True
                try:
                    resp = client.get(url, timeout=self.timeout)
                except httpx.HTTPError as exc:
                    logger.info("Gateway error %s: %s, trying next...", url, exc)
                    failures.append(f"{url}: {exc.__class__.__name__}")
                else:
                    if resp.status_code == 200:
                        logger.info("Downloaded %d bytes from %s", len(resp.content), url)
                        return resp.content
                    logger.info("Gateway returned %d for %s, trying next...", resp.status_code, url)
                    failures.append(f"{url}: HTTP {resp.status_code}")
                    retryable = resp.status_code in _RETRYABLE_STATUS

                if not retryable or attempt == self.attempts_per_gateway:
                    break
                self._sleep(self.backoff_seconds * (2 ** (attempt - 1)))

        raise AllGatewaysExhaustedError(
            "Failed to download from all IPFS gateways: " + "; ".join(failures)
        )
