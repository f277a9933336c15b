from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from api.deps import get_context
from core.context import AppContext
from core.models import RecordKind

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scraping", tags=["sync"])


@router.post("/sync")
async def run_sync(
    payload: dict[str, Any] | None = Body(None),
    context: AppContext = Depends(get_context),
):
    kind = (payload or {}).get("type") or "all"
    if kind == "all":
        counts = await context.reconciler.reconcile_all()
        return {
            "success": True,
            "message": (
                f"Synchronized {counts['configurations']} configurations "
                f"and {counts['results']} results"
            ),
            "counts": counts,
        }
    try:
        record_kind = RecordKind(kind)
    except ValueError:
        raise HTTPException(400, f"Unknown sync type: {kind}")
    count = await context.reconciler.reconcile_kind(record_kind)
    return {
        "success": True,
        "message": f"Synchronized {count} {record_kind.value}",
        "count": count,
    }


@router.get("/scheduler")
async def scheduler_status(context: AppContext = Depends(get_context)):
    return context.scheduler.status()


@router.post("/scheduler")
async def control_scheduler(
    payload: dict[str, Any] = Body(...),
    context: AppContext = Depends(get_context),
):
    action = payload.get("action")
    if action == "start":
        interval = payload.get("interval")
        if interval is not None and (
            isinstance(interval, bool) or not isinstance(interval, int) or interval <= 0
        ):
            raise HTTPException(400, "interval must be a positive number of milliseconds")
        context.scheduler.start(interval)
        return {
            "success": True,
            "message": "Synchronization scheduler started",
            "interval": context.scheduler.interval_ms,
        }
    if action == "stop":
        context.scheduler.stop()
        return {"success": True, "message": "Synchronization scheduler stopped"}
    raise HTTPException(400, "Invalid action")
