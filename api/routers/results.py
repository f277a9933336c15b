from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from api.deps import get_context
from core.context import AppContext
from core.models import ScrapingResult

router = APIRouter(prefix="/api/scraping/results", tags=["results"])


@router.get("")
async def list_results(
    limit: int | None = None,
    offset: int = 0,
    context: AppContext = Depends(get_context),
):
    results = await context.storage.results.list(limit=limit, offset=offset)
    return [r.to_dict() for r in results]


@router.post("", status_code=201)
async def create_result(
    payload: dict[str, Any] = Body(...),
    context: AppContext = Depends(get_context),
):
    saved = await context.storage.results.upsert(ScrapingResult.from_dict(payload))
    return saved.to_dict()


@router.get("/{result_id}")
async def get_result(result_id: str, context: AppContext = Depends(get_context)):
    result = await context.storage.results.get_by_id(result_id)
    if result is None:
        raise HTTPException(404, "Result not found")
    return result.to_dict()


@router.delete("/{result_id}")
async def delete_result(result_id: str, context: AppContext = Depends(get_context)):
    if not await context.storage.results.delete(result_id):
        raise HTTPException(404, "Result not found")
    return {"success": True, "id": result_id}
