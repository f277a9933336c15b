from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from api.deps import get_context
from core.context import AppContext
from core.models import ScrapingConfig
from scrapers.base import run_scraper

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scraping", tags=["scrape"])


@router.post("")
async def scrape(
    payload: dict[str, Any] = Body(...),
    context: AppContext = Depends(get_context),
):
    config = ScrapingConfig.from_dict(payload)
    config.validate()

    if config.mode in ("multiple", "scheduled"):
        job_id = context.queue.add_job(config)
        return JSONResponse(
            {
                "jobId": job_id,
                "message": f"Scraping job added to queue. Check status at /api/scraping/queue/{job_id}",
                "status": "queued",
            },
            status_code=202,
        )

    result = await run_scraper(
        context.scraper, config, timeout=context.settings.SCRAPE_TIMEOUT_SECONDS
    )
    saved = await context.storage.results.upsert(result)
    log.info("Scraped %s: %s (result %s)", config.url, saved.status, saved.id)
    return saved.to_dict()
