from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from api.deps import get_context
from core.context import AppContext
from core.models import ScrapingConfig

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scraping/configurations", tags=["configurations"])


@router.get("")
async def list_configurations(
    limit: int | None = None,
    offset: int = 0,
    context: AppContext = Depends(get_context),
):
    configs = await context.storage.configurations.list(limit=limit, offset=offset)
    return [c.to_dict() for c in configs]


@router.post("", status_code=201)
async def create_configuration(
    payload: dict[str, Any] = Body(...),
    context: AppContext = Depends(get_context),
):
    config = ScrapingConfig.from_dict(payload)
    saved = await context.storage.configurations.upsert(config)
    log.info("Saved configuration %s", saved.id)
    return saved.to_dict()


@router.get("/{config_id}")
async def get_configuration(config_id: str, context: AppContext = Depends(get_context)):
    config = await context.storage.configurations.get_by_id(config_id)
    if config is None:
        raise HTTPException(404, "Configuration not found")
    return config.to_dict()


@router.put("/{config_id}")
async def update_configuration(
    config_id: str,
    payload: dict[str, Any] = Body(...),
    context: AppContext = Depends(get_context),
):
    existing = await context.storage.configurations.get_by_id(config_id)
    if existing is None:
        raise HTTPException(404, "Configuration not found")
    # The path id wins over any id in the body.
    merged = ScrapingConfig.from_dict({**existing.to_dict(), **payload, "id": config_id})
    saved = await context.storage.configurations.upsert(merged)
    return saved.to_dict()


@router.delete("/{config_id}")
async def delete_configuration(config_id: str, context: AppContext = Depends(get_context)):
    if not await context.storage.configurations.delete(config_id):
        raise HTTPException(404, "Configuration not found")
    return {"success": True, "id": config_id}
