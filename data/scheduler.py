from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import timezone
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from data.sync import Reconciler

log = logging.getLogger(__name__)

JOB_ID = "reconcile"


class SyncScheduler:
    """Runs :meth:`Reconciler.reconcile_all` on a single interval timer."""

    def __init__(
        self,
        reconciler: Reconciler,
        *,
        default_interval_ms: int = 60 * 60 * 1000,
        broadcast_fn: Callable[[dict[str, Any]], Awaitable[None]] | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._default_interval_ms = default_interval_ms
        self._broadcast = broadcast_fn
        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._interval_ms: int | None = None

    @property
    def running(self) -> bool:
        return self._interval_ms is not None

    @property
    def interval_ms(self) -> int | None:
        return self._interval_ms

    def start(self, interval_ms: int | None = None) -> bool:
        """Start, or retime, the timer. Returns False when nothing changed."""
        interval = self._default_interval_ms if interval_ms is None else interval_ms
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if self._interval_ms == interval:
            log.debug("Sync scheduler already running every %dms", interval)
            return False

        if not self._scheduler.running:
            self._scheduler.start()
        if self._scheduler.get_job(JOB_ID) is not None:
            self._scheduler.remove_job(JOB_ID)
        self._scheduler.add_job(
            self._tick,
            "interval",
            seconds=interval / 1000,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self._interval_ms = interval
        log.info("Sync scheduler started with interval %dms", interval)
        return True

    def stop(self) -> bool:
        """Cancel future ticks; a tick already running is not interrupted."""
        if self._interval_ms is None:
            return False
        if self._scheduler.get_job(JOB_ID) is not None:
            self._scheduler.remove_job(JOB_ID)
        self._interval_ms = None
        log.info("Sync scheduler stopped")
        return True

    def shutdown(self) -> None:
        self.stop()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def active_timers(self) -> int:
        return len(self._scheduler.get_jobs())

    def status(self) -> dict[str, Any]:
        job = self._scheduler.get_job(JOB_ID)
        next_run = job.next_run_time if job is not None else None
        return {
            "running": self.running,
            "interval_ms": self._interval_ms,
            "next_run": next_run.isoformat() if next_run else None,
            "sync_in_progress": self._reconciler.running,
        }

    async def _tick(self) -> None:
        try:
            counts = await self._reconciler.reconcile_all()
        except Exception:
            log.exception("Scheduled synchronization failed")
            return

        log.info(
            "Synchronized %d configurations and %d results",
            counts.get("configurations", 0),
            counts.get("results", 0),
        )
        if self._broadcast:
            await self._broadcast({"event": "sync_complete", **counts})
