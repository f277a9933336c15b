from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from core.errors import ValidationError
from core.models import ResultMetadata, RawContent, ScrapingConfig, ScrapingResult

log = logging.getLogger(__name__)

RESULT_VERSION = "1.0.0"


class BaseScraper(ABC):
    """Executor contract used by the job queue and the direct scrape route."""

    @abstractmethod
    async def scrape(self, config: ScrapingConfig) -> ScrapingResult:
        """Scrape ``config.url`` once. May raise."""
        ...


class RateLimiter:
    """Simple token-bucket style rate limiter."""

    def __init__(self, delay_seconds: float = 1.0) -> None:
        self._delay = delay_seconds
        self._lock = asyncio.Lock()
        self._last_request: float = 0.0

    async def wait(self, delay_seconds: float | None = None) -> None:
        delay = max(self._delay, delay_seconds or 0.0)
        async with self._lock:
            now = asyncio.get_running_loop().time()
            elapsed = now - self._last_request
            if elapsed < delay:
                await asyncio.sleep(delay - elapsed)
            self._last_request = asyncio.get_running_loop().time()


def failed_result(config: ScrapingConfig, message: str) -> ScrapingResult:
    """The result stored when the executor raised or timed out."""
    return ScrapingResult(
        config_id=config.id or "manual",
        url=config.url,
        status="failed",
        raw=RawContent(text=message),
        metadata=ResultMetadata(errors=[message], version=RESULT_VERSION),
    )


async def run_scraper(
    scraper: BaseScraper, config: ScrapingConfig, *, timeout: float
) -> ScrapingResult:
    """Scrape under a deadline; executor failures come back as failed results.

    A result that does not validate counts as an executor failure too, so
    nothing downstream sees wrongly typed fields.
    """
    try:
        result = await asyncio.wait_for(scraper.scrape(config), timeout=timeout)
    except TimeoutError:
        return failed_result(config, "Scraping operation timed out")
    except Exception as exc:
        return failed_result(config, str(exc) or type(exc).__name__)
    try:
        result.validate()
    except ValidationError as exc:
        log.warning("Scraper returned an invalid result for %s: %s", config.url, exc)
        return failed_result(config, f"Invalid scraper result: {exc}")
    return result
