from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from fastapi import APIRouter, Depends

from api.deps import get_context
from core.context import AppContext
from core.errors import StorageError
from core.models import RESULT_STATUSES, ScrapingConfig, ScrapingResult, format_ts

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scraping/analytics", tags=["analytics"])

RECENT_ACTIVITY = 10


async def _load(collection, what: str) -> list[Any]:
    # An unreadable kind counts as empty.
    try:
        return await collection.list()
    except StorageError as exc:
        log.error("Analytics: could not load %s: %s", what, exc)
        return []


def build_report(
    configs: list[ScrapingConfig], results: list[ScrapingResult]
) -> dict[str, Any]:
    """Counts and distributions over every stored configuration and result."""
    statuses = Counter(r.status for r in results)
    total = len(results)
    success_rate = statuses["success"] / total * 100 if total else 0.0

    urls = {c.url for c in configs if c.url}
    urls.update(u for c in configs for u in c.urls)

    categories: Counter[str] = Counter()
    for result in results:
        categories.update(result.categories.keys())

    recent = sorted(results, key=lambda r: r.timestamp, reverse=True)[:RECENT_ACTIVITY]

    return {
        "overview": {
            "totalConfigurations": len(configs),
            "totalResults": total,
            "successfulResults": statuses["success"],
            "failedResults": statuses["failed"],
            "partialResults": statuses["partial"],
            "warningResults": statuses["warning"],
            "successRate": f"{success_rate:.2f}%",
            "uniqueUrlsCount": len(urls),
        },
        "distributions": {
            "modes": dict(Counter(c.mode for c in configs)),
            "categories": dict(categories),
            "statuses": {status: statuses[status] for status in RESULT_STATUSES},
        },
        "recentActivity": [
            {
                "id": r.id,
                "configId": r.config_id,
                "url": r.url,
                "timestamp": format_ts(r.timestamp),
                "status": r.status,
            }
            for r in recent
        ],
    }


@router.get("")
async def analytics(context: AppContext = Depends(get_context)):
    configs = await _load(context.storage.configurations, "configurations")
    results = await _load(context.storage.results, "results")
    log.info("Analytics over %d configurations and %d results", len(configs), len(results))
    return build_report(configs, results)
