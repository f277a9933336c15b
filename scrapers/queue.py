from __future__ import annotations

import asyncio
import contextlib
import copy
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from core.errors import StorageError, ValidationError
from core.ids import generate_unique_id
from core.models import Job, ScrapingConfig, format_ts, utcnow
from data.storage import Storage
from scrapers.base import BaseScraper, run_scraper

log = logging.getLogger(__name__)


class JobQueue:
    """In-memory FIFO of scraping jobs drained by one worker task.

    Jobs move ``queued -> processing -> completed | failed``; a queued job
    may also be removed. Nothing here is durable: a restart drops every job.
    """

    def __init__(
        self,
        storage: Storage,
        scraper: BaseScraper,
        *,
        scrape_timeout: float = 60.0,
        history_limit: int = 100,
        broadcast_fn: Callable[[dict[str, Any]], Awaitable[None]] | None = None,
    ) -> None:
        self._storage = storage
        self._scraper = scraper
        self._scrape_timeout = scrape_timeout
        self._history_limit = history_limit
        self._broadcast = broadcast_fn
        self._jobs: dict[str, Job] = {}
        self._pending: deque[str] = deque()
        self._finished: deque[str] = deque()
        self._wakeup = asyncio.Event()
        self._worker: asyncio.Task | None = None

    # ── public API ───────────────────────────────────────────────────

    def add_job(self, config: ScrapingConfig) -> str:
        config.validate()
        job = Job(id=generate_unique_id("job"), config=copy.deepcopy(config))
        self._jobs[job.id] = job
        self._pending.append(job.id)
        self._wakeup.set()
        log.info("Queued job %s (%d URL(s))", job.id, len(config.target_urls()))
        return job.id

    def get_job(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return copy.deepcopy(job) if job is not None else None

    def get_all_jobs(self) -> list[Job]:
        return [copy.deepcopy(job) for job in self._jobs.values()]

    def remove_job(self, job_id: str) -> bool:
        """Drop a job that has not started. In-flight work is not preemptible."""
        job = self._jobs.get(job_id)
        if job is None or job.status != "queued":
            return False
        del self._jobs[job_id]
        self._pending.remove(job_id)
        log.info("Removed queued job %s", job_id)
        return True

    async def process_next(self) -> Job | None:
        """Run the earliest queued job to completion; None if none is queued."""
        if not self._pending:
            return None
        job = self._jobs[self._pending.popleft()]
        await self._run(job)
        return copy.deepcopy(job)

    # ── worker lifecycle ─────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if not self.running:
            self._worker = asyncio.create_task(self._work(), name="job-queue-worker")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

    async def _work(self) -> None:
        log.info("Job queue worker started")
        while True:
            if not self._pending:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue
            try:
                await self.process_next()
            except Exception:
                log.exception("Job queue worker iteration failed")

    # ── job execution ────────────────────────────────────────────────

    async def _run(self, job: Job) -> None:
        job.status = "processing"
        job.started_at = utcnow()
        log.info("Processing job %s", job.id)

        errors: list[str] = []
        try:
            for url in job.config.target_urls():
                target = copy.deepcopy(job.config)
                target.url = url
                target.urls = []
                result = await run_scraper(self._scraper, target, timeout=self._scrape_timeout)
                if result.status == "failed":
                    reason = "; ".join(result.metadata.errors) or "scrape failed"
                    log.warning("Job %s: %s failed: %s", job.id, url, reason)
                    errors.append(f"{url}: {reason}")
                saved = await self._storage.results.upsert(result)
                job.result_ids.append(saved.id)
        except (StorageError, ValidationError) as exc:
            log.error("Job %s: could not store result: %s", job.id, exc)
            errors.append(f"storage: {exc}")

        job.finished_at = utcnow()
        job.status = "failed" if errors else "completed"
        job.error = "; ".join(errors) or None
        log.info(
            "Finished job %s: %s | %d result(s)", job.id, job.status, len(job.result_ids)
        )

        await self._record_run(job)
        self._retire(job)
        if self._broadcast:
            await self._broadcast(
                {
                    "event": "job_complete",
                    "job_id": job.id,
                    "status": job.status,
                    "results": len(job.result_ids),
                }
            )

    async def _record_run(self, job: Job) -> None:
        """Fold the run into the stored configuration's status and metadata."""
        if not job.config.id:
            return
        try:
            config = await self._storage.configurations.get_by_id(job.config.id)
            if config is None:
                return
            stats = config.metadata
            stats["runCount"] = stats.get("runCount", 0) + 1
            counter = "failureCount" if job.status == "failed" else "successCount"
            stats[counter] = stats.get(counter, 0) + 1
            stats["lastRun"] = format_ts(job.finished_at)
            stats["lastRunStatus"] = job.status
            stats["lastRunDuration"] = round(
                (job.finished_at - job.started_at).total_seconds() * 1000
            )
            stats["lastRunError"] = job.error
            config.status = job.status
            if config.schedule is not None:
                config.schedule.last_run = stats["lastRun"]
            await self._storage.configurations.upsert(config)
        except (StorageError, ValidationError) as exc:
            log.warning("Job %s: could not update configuration %s: %s",
                        job.id, job.config.id, exc)

    def _retire(self, job: Job) -> None:
        self._finished.append(job.id)
        while len(self._finished) > self._history_limit:
            self._jobs.pop(self._finished.popleft(), None)
