"""HTTP client for the product scraping service."""

from __future__ import annotations

import logging
import os
from typing import Protocol
from urllib.parse import urlparse

import httpx

from linkpool.scrape.models import ScrapeResult
from linkpool.utils.rate_limit import RateLimiter
from linkpool.utils.retry import retry_async

logger = logging.getLogger(__name__)

DEFAULT_SCRAPER_URL = "http://localhost:3000/api/scrape"


class Scraper(Protocol):
    async def scrape(self, url: str) -> ScrapeResult: ...


class ScrapeClient:
    """Calls the scraping service and never raises for ordinary failures."""

    def __init__(
        self,
        *,
        endpoint: str | None = None,
        timeout: float | None = None,
        session: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.endpoint = endpoint or os.environ.get("SCRAPER_URL", DEFAULT_SCRAPER_URL)
        timeout = timeout if timeout is not None else float(os.environ.get("SCRAPER_TIMEOUT", 60))
        self._session = session or httpx.AsyncClient(timeout=timeout, headers={"User-Agent": "LinkPool/1.0"})
        self._rate_limiter = rate_limiter or RateLimiter(rate=float(os.environ.get("SCRAPER_RATE", 1.0)))

    async def close(self) -> None:
        await self._session.aclose()

    async def __aenter__(self) -> "ScrapeClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def scrape(self, url: str) -> ScrapeResult:
        host = urlparse(url).netloc or url
        await self._rate_limiter.wait_for_host(host)
        try:
            response = await retry_async(self._session.post)(self.endpoint, json={"url": url})
        except httpx.HTTPError as exc:
            logger.warning("Scrape request failed for %s: %s", url, exc)
            return ScrapeResult.failure(url, f"request failed: {exc}")
        if response.status_code >= 400:
            logger.warning("Scraper returned %s for %s", response.status_code, url)
            return ScrapeResult.failure(url, _error_detail(response))
        try:
            payload = response.json()
        except ValueError:
            return ScrapeResult.failure(url, "invalid JSON from scraper")
        if not isinstance(payload, dict):
            return ScrapeResult.failure(url, "unexpected scraper payload")
        return ScrapeResult.from_payload(url, payload)


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"HTTP {response.status_code}"
