from __future__ import annotations

import asyncio
import json
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from api.routers import analytics, configurations, queue, results, scrape, sync
from config.settings import Settings
from core.context import AppContext
from core.errors import StorageError, ValidationError
from scrapers.base import BaseScraper

log = logging.getLogger(__name__)


class Broadcaster:
    """Simple in-memory SSE broadcaster."""

    def __init__(self) -> None:
        self._listeners: list[asyncio.Queue] = []

    async def broadcast(self, data: dict) -> None:
        for q in list(self._listeners):
            try:
                q.put_nowait(data)
            except asyncio.QueueFull:
                pass

    def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=50)
        self._listeners.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        if q in self._listeners:
            self._listeners.remove(q)


def create_app(settings: Settings, *, scraper: BaseScraper | None = None) -> FastAPI:
    app = FastAPI(title="Scraping Store", version="0.1.0")
    broadcaster = Broadcaster()
    app.state.broadcaster = broadcaster

    app.include_router(scrape.router)
    app.include_router(configurations.router)
    app.include_router(results.router)
    app.include_router(queue.router)
    app.include_router(sync.router)
    app.include_router(analytics.router)

    @app.on_event("startup")
    async def on_startup() -> None:
        context = AppContext.from_settings(
            settings, scraper=scraper, broadcast_fn=broadcaster.broadcast
        )
        app.state.init_status = await context.open()
        app.state.context = context

        if settings.SYNC_ON_STARTUP:
            counts = await context.reconciler.reconcile_all()
            log.info("Startup sync: %s", counts)
        if settings.SYNC_SCHEDULER_ENABLED:
            context.scheduler.start()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        if hasattr(app.state, "context"):
            await app.state.context.close()
            log.info("Storage context closed.")

    @app.exception_handler(ValidationError)
    async def on_validation_error(request: Request, exc: ValidationError):
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.exception_handler(StorageError)
    async def on_storage_error(request: Request, exc: StorageError):
        log.error("Storage failure on %s: %s", request.url.path, exc)
        return JSONResponse({"error": str(exc)}, status_code=503)

    # SSE: one event per finished job or reconciliation tick
    @app.get("/api/events")
    async def sse_events(request: Request):
        q = broadcaster.subscribe()

        async def event_generator():
            try:
                while True:
                    if await request.is_disconnected():
                        break
                    try:
                        data = await asyncio.wait_for(q.get(), timeout=30.0)
                    except TimeoutError:
                        yield {"event": "ping", "data": ""}
                        continue
                    yield {"event": data.get("event", "message"), "data": json.dumps(data)}
            finally:
                broadcaster.unsubscribe(q)

        return EventSourceResponse(event_generator())

    @app.get("/health")
    async def health(request: Request):
        context: AppContext = request.app.state.context
        return {
            "status": "ok",
            "database": context.database.available,
            "queue_worker": context.queue.running,
            "scheduler": context.scheduler.running,
        }

    return app
