"""Default page scraper using httpx.

Captures the response body only; extracting categorized items from it is
left to other executors.
"""

from __future__ import annotations

import logging
import time

import httpx

from core.models import RawContent, ResultMetadata, ScrapingConfig, ScrapingResult
from scrapers.base import RESULT_VERSION, BaseScraper, RateLimiter

log = logging.getLogger(__name__)


class PageScraper(BaseScraper):
    def __init__(
        self,
        *,
        user_agent: str,
        delay_seconds: float = 1.0,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._user_agent = user_agent
        self._timeout = timeout_seconds
        self._limiter = RateLimiter(delay_seconds=delay_seconds)

    async def scrape(self, config: ScrapingConfig) -> ScrapingResult:
        options = config.options
        t0 = time.monotonic()
        await self._limiter.wait(options.rate_limit_delay / 1000)

        headers = {"User-Agent": options.user_agent or self._user_agent}
        headers.update(options.headers or {})
        timeout = options.timeout / 1000 if options.timeout else self._timeout

        async with httpx.AsyncClient(
            headers=headers,
            cookies=options.cookies,
            proxy=options.proxy_url,
            follow_redirects=True,
            timeout=timeout,
        ) as client:
            resp = await client.get(config.url)

        elapsed_ms = round((time.monotonic() - t0) * 1000, 1)
        log.info("Fetched %s (status %d) in %.0fms", config.url, resp.status_code, elapsed_ms)

        if "html" in resp.headers.get("content-type", ""):
            raw = RawContent(html=resp.text)
        else:
            raw = RawContent(text=resp.text)
        errors = [] if resp.is_success else [f"HTTP {resp.status_code}"]

        return ScrapingResult(
            config_id=config.id or "manual",
            url=config.url,
            status="success" if resp.is_success else "failed",
            raw=raw,
            metadata=ResultMetadata(
                processing_time=elapsed_ms,
                page_count=1,
                errors=errors,
                version=RESULT_VERSION,
            ),
        )
