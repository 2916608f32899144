"""Async HTTP client for quote providers, with rate limiting, relays and retry."""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar
from urllib.parse import quote

import httpx

from ..config import Config
from ..errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures worth another attempt: network, non-2xx, unusable payload
RETRYABLE = (httpx.HTTPError, ProviderError, ValueError)


def relay_url(template: str, url: str) -> str:
    """Build a relayed URL from a relay template."""
    if "{url}" in template:
        return template.replace("{url}", quote(url, safe=""))
    if "{raw_url}" in template:
        return template.replace("{raw_url}", url)
    return f"{template}{url}"


async def retry(
    operation: Callable[[], Awaitable[T]],
    attempts: int,
    backoff: float,
    label: str,
) -> T:
    """Run an operation up to `attempts` times, sleeping `backoff` between tries."""
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except RETRYABLE as e:
            last_error = e
            logger.debug("%s attempt %d/%d failed: %s", label, attempt, attempts, e)
            if attempt < attempts:
                await asyncio.sleep(backoff)
    raise last_error or ProviderError(f"{label}: no attempts made")


class QuoteClient:
    """HTTP client for quote and NAV providers."""

    USER_AGENT = "Mozilla/5.0 (compatible; portfolio-pulse)"

    def __init__(self, config: Config, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        self._last_request_time: float = 0.0
        self._min_request_interval = 1.0 / config.rate_limit_per_second

        self._client = httpx.AsyncClient(
            headers={
                "User-Agent": self.USER_AGENT,
                "Accept": "application/json",
                "Accept-Language": "en-US,en;q=0.9",
            },
            timeout=config.yahoo_timeout_seconds,
            follow_redirects=True,
            transport=transport,
        )

    async def _rate_limit(self) -> None:
        """Enforce a minimum gap between outgoing requests."""
        now = time.monotonic()
        elapsed = now - self._last_request_time
        if elapsed < self._min_request_interval:
            await asyncio.sleep(self._min_request_interval - elapsed)
        self._last_request_time = time.monotonic()

    async def get_json(self, url: str, timeout: float | None = None) -> Any:
        """Fetch and decode JSON from a URL, single attempt."""
        await self._rate_limit()
        response = await self._client.get(url, timeout=timeout or httpx.USE_CLIENT_DEFAULT)
        response.raise_for_status()
        try:
            return json.loads(response.content)
        except json.JSONDecodeError as e:
            raise ProviderError(f"Invalid JSON from {url}: {e}") from e

    async def get_json_via_relays(self, url: str, timeout: float | None = None) -> Any:
        """
        Fetch JSON through the configured relays, in order.

        Each relay gets `relay_attempts` tries with a short backoff before the
        next relay is used. With no relays configured the URL is fetched
        directly under the same retry policy.

        Raises:
            The last error seen once every relay is exhausted.
        """
        templates = self.config.relays or [""]
        last_error: Exception | None = None

        for template in templates:
            target = relay_url(template, url) if template else url
            label = f"relay {template[:30]}" if template else "direct"
            try:
                return await retry(
                    lambda: self.get_json(target, timeout),
                    attempts=self.config.relay_attempts,
                    backoff=self.config.retry_backoff_seconds,
                    label=label,
                )
            except RETRYABLE as e:
                last_error = e
                logger.debug("%s exhausted for %s: %s", label, url, e)

        raise last_error or ProviderError(f"All relays failed for {url}")

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "QuoteClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()
