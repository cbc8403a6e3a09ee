"""Immo Harvester — Async HTTP Retriever.

The lightweight retrieval strategy, used for JSON APIs and server-rendered
HTML. Built on httpx.AsyncClient with:
  - User-agent rotation from config
  - Backoff retry (429, 5xx, timeout, connection errors)
  - Rate limiting via AsyncRateLimiter plus a concurrency cap
  - Status codes preserved so active-status probes can tell 404 from
    "unknown"
"""

from __future__ import annotations

import asyncio
import json
import random
from typing import Any, NamedTuple, Optional

import httpx

from immo_harvester.config import HttpConfig
from immo_harvester.utils.logger import get_logger
from immo_harvester.utils.rate_limiter import AsyncRateLimiter

logger = get_logger(__name__)

# ── Browser-like headers common to all requests ──────────
DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "de-DE,de;q=0.9,en-US;q=0.8,en;q=0.7",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}

# Status code used when no HTTP response was received at all.
NO_RESPONSE = 0


class FetchResult(NamedTuple):
    """Outcome of a retrieval: content is None on any failure."""

    content: Optional[str]
    status_code: int

    @property
    def ok(self) -> bool:
        return self.content is not None and 200 <= self.status_code < 300


class HttpRetriever:
    """Async HTTP retriever with retry, rate limiting and bounded concurrency.

    Attributes:
        config: HTTP configuration from settings.yaml.
        total_requests: Running count of completed requests this session.
    """

    def __init__(
        self,
        config: HttpConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the retriever.

        Args:
            config: HttpConfig instance loaded from settings.yaml.
            transport: Optional httpx transport (tests pass a MockTransport).
        """
        self.config = config
        self.total_requests: int = 0
        self._transport = transport
        self._rate_limiter = AsyncRateLimiter(
            max_calls=config.rate_limit_calls,
            period_seconds=config.rate_limit_period_seconds,
        )
        self._semaphore = asyncio.Semaphore(config.max_concurrency)
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Lazily create the httpx.AsyncClient."""
        if self._client is None:
            kwargs: dict[str, Any] = {
                "headers": {**DEFAULT_HEADERS, "User-Agent": self._random_user_agent()},
                "follow_redirects": True,
                "timeout": httpx.Timeout(self.config.timeout_seconds),
            }
            if self._transport is not None:
                kwargs["transport"] = self._transport
            elif self.config.proxy_url:
                kwargs["proxy"] = self.config.proxy_url
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    def _random_user_agent(self) -> str:
        return random.choice(self.config.user_agents)

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Optional[dict[str, str]] = None,
        json_body: Any = None,
    ) -> FetchResult:
        """Fetch a URL and return its body with the final status code.

        Retry strategy:
          - 429 Too Many Requests: honour Retry-After, else backoff
          - 5xx Server Error: backoff × attempt
          - Timeout / connection error: backoff × attempt
        Any other non-success status returns immediately with no content.

        Args:
            url: Request URL.
            method: HTTP method ("GET" or "POST").
            headers: Per-request headers; override the defaults.
            json_body: JSON-serializable body for POST requests.

        Returns:
            FetchResult; status_code is 0 when no response was received.
        """
        client = self._get_client()
        max_retries = self.config.max_retries
        backoff = self.config.backoff_seconds
        last_status = NO_RESPONSE

        for attempt in range(1, max_retries + 1):
            request_headers = {"User-Agent": self._random_user_agent()}
            if headers:
                request_headers.update(headers)

            async with self._semaphore:
                await self._rate_limiter.acquire()
                try:
                    resp = await client.request(
                        method, url, headers=request_headers, json=json_body,
                    )
                except httpx.TimeoutException:
                    logger.warning("Timeout on attempt %d/%d for %s", attempt, max_retries, url)
                    last_status = NO_RESPONSE
                    resp = None
                except httpx.HTTPError as e:
                    logger.warning(
                        "Connection error on attempt %d/%d for %s: %s",
                        attempt, max_retries, url, e,
                    )
                    last_status = NO_RESPONSE
                    resp = None

            if resp is not None:
                self.total_requests += 1
                last_status = resp.status_code

                if resp.is_success:
                    return FetchResult(resp.text, resp.status_code)

                if resp.status_code == 429:
                    wait = _retry_after(resp, backoff * attempt)
                    logger.warning(
                        "Rate limited (429) on attempt %d/%d. Waiting %.1fs...",
                        attempt, max_retries, wait,
                    )
                    if attempt < max_retries:
                        await asyncio.sleep(wait)
                    continue

                if resp.status_code >= 500:
                    logger.warning(
                        "Server error %d on attempt %d/%d for %s",
                        resp.status_code, attempt, max_retries, url,
                    )
                    if attempt < max_retries:
                        await asyncio.sleep(backoff * attempt)
                    continue

                level = logger.debug if resp.status_code == 404 else logger.warning
                level("HTTP %d for %s", resp.status_code, url)
                return FetchResult(None, resp.status_code)

            if attempt < max_retries:
                await asyncio.sleep(backoff * attempt)

        logger.error("All %d attempts failed for %s", max_retries, url)
        return FetchResult(None, last_status)

    async def fetch_json(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Optional[dict[str, str]] = None,
        json_body: Any = None,
    ) -> Optional[Any]:
        """Fetch a URL and parse the body as JSON. Returns None on any failure."""
        result = await self.fetch(url, method=method, headers=headers, json_body=json_body)
        if result.content is None:
            return None
        try:
            return json.loads(result.content)
        except ValueError as e:
            logger.error("Failed to parse JSON from %s: %s", url, e)
            return None

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.debug("HTTP client closed (total requests: %d)", self.total_requests)

    async def __aenter__(self) -> "HttpRetriever":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()


def _retry_after(resp: httpx.Response, default: float) -> float:
    value = resp.headers.get("Retry-After")
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default
