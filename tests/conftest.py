from __future__ import annotations

from pathlib import Path

import pytest

from config.settings import Settings
from core.models import ResultMetadata, ScrapingConfig, ScrapingResult
from data.database import Database
from data.file_store import FileStore
from data.storage import Storage
from scrapers.base import RESULT_VERSION, BaseScraper


class FakeScraper(BaseScraper):
    """Answers from a table instead of the network.

    ``failures`` maps a URL to the exception raised for it; ``statuses``
    maps a URL to the result status returned for it.
    """

    def __init__(
        self,
        *,
        failures: dict[str, Exception] | None = None,
        statuses: dict[str, str] | None = None,
    ) -> None:
        self.failures = failures or {}
        self.statuses = statuses or {}
        self.calls: list[str] = []

    async def scrape(self, config: ScrapingConfig) -> ScrapingResult:
        self.calls.append(config.url)
        if config.url in self.failures:
            raise self.failures[config.url]
        status = self.statuses.get(config.url, "success")
        result = ScrapingResult(
            config_id=config.id or "manual",
            url=config.url,
            status=status,
            metadata=ResultMetadata(
                errors=[] if status != "failed" else ["HTTP 500"],
                version=RESULT_VERSION,
            ),
        )
        result.add_item("articles", "Headline", f"Body of {config.url}")
        return result


def unreachable_database_url(tmp_path: Path) -> str:
    # SQLite cannot create a database file inside a missing directory.
    return f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nested' / 'store.db'}"


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'store.db'}",
        DATA_DIR=str(tmp_path / "files"),
        DB_TIMEOUT_SECONDS=5.0,
        DB_RETRY_INTERVAL_SECONDS=3600.0,
        SYNC_ON_STARTUP=False,
        SYNC_SCHEDULER_ENABLED=False,
        SCRAPE_REQUEST_DELAY=0.0,
        SCRAPE_TIMEOUT_SECONDS=2.0,
    )


@pytest.fixture
def make_storage(tmp_path: Path):
    """Build an unopened ``(database, files, storage)`` triple.

    Construction is loop-free; callers ``init`` and ``close`` inside the
    event loop of their own scenario.
    """

    def build(*, database_url: str | None = None, data_dir: Path | None = None):
        database = Database(
            database_url or f"sqlite+aiosqlite:///{tmp_path / 'store.db'}",
            timeout_seconds=5.0,
            retry_interval_seconds=3600.0,
        )
        files = FileStore(data_dir or tmp_path / "files")
        return database, files, Storage(database, files)

    return build


@pytest.fixture
def sample_config() -> ScrapingConfig:
    return ScrapingConfig(
        name="News front page",
        url="https://news.test/",
        categories=["articles"],
        tags=["news"],
    )


@pytest.fixture
def sample_result() -> ScrapingResult:
    result = ScrapingResult(config_id="cfg-1", url="https://news.test/")
    result.add_item("articles", "First", "First article body", source="https://news.test/1")
    return result
