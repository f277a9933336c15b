"""Process-level wiring of the storage layer, reconciler, scheduler and queue.

Nothing opens a connection, starts a timer or spawns a task on import; the
entry point builds one :class:`AppContext` and drives ``open``/``close``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from config.settings import Settings
from core.errors import StorageError
from data.database import Database
from data.file_store import FileStore
from data.scheduler import SyncScheduler
from data.storage import Storage
from data.sync import Reconciler
from scrapers.base import BaseScraper
from scrapers.page import PageScraper
from scrapers.queue import JobQueue

log = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    database: Database
    files: FileStore
    storage: Storage
    reconciler: Reconciler
    scheduler: SyncScheduler
    queue: JobQueue
    scraper: BaseScraper

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        scraper: BaseScraper | None = None,
        broadcast_fn: Callable[[dict[str, Any]], Awaitable[None]] | None = None,
    ) -> AppContext:
        database = Database(
            settings.DATABASE_URL,
            timeout_seconds=settings.DB_TIMEOUT_SECONDS,
            retry_interval_seconds=settings.DB_RETRY_INTERVAL_SECONDS,
            pool_size=settings.DB_POOL_SIZE,
        )
        files = FileStore(settings.DATA_DIR)
        storage = Storage(database, files)
        reconciler = Reconciler(database, files)
        if scraper is None:
            scraper = PageScraper(
                user_agent=settings.SCRAPE_USER_AGENT,
                delay_seconds=settings.SCRAPE_REQUEST_DELAY,
                timeout_seconds=settings.SCRAPE_TIMEOUT_SECONDS,
            )
        return cls(
            settings=settings,
            database=database,
            files=files,
            storage=storage,
            reconciler=reconciler,
            scheduler=SyncScheduler(
                reconciler,
                default_interval_ms=settings.SYNC_INTERVAL_MS,
                broadcast_fn=broadcast_fn,
            ),
            queue=JobQueue(
                storage,
                scraper,
                scrape_timeout=settings.SCRAPE_TIMEOUT_SECONDS,
                history_limit=settings.QUEUE_HISTORY_LIMIT,
                broadcast_fn=broadcast_fn,
            ),
            scraper=scraper,
        )

    async def open(self, *, start_worker: bool = True) -> dict[str, bool]:
        """Prepare both backends and start the queue worker.

        The file store must come up; the database may not, in which case
        every call falls back to files until it recovers.
        """
        try:
            await self.files.init()
        except OSError as exc:
            raise StorageError(f"Cannot initialize file storage at {self.settings.DATA_DIR}") from exc
        database_ready = await self.database.init()
        if start_worker:
            self.queue.start()
        log.info("Storage initialized (database: %s)", "ready" if database_ready else "unavailable")
        return {"database": database_ready, "file_storage": True}

    async def close(self) -> None:
        self.scheduler.shutdown()
        await self.queue.stop()
        await self.storage.flush()
        await self.database.close()
