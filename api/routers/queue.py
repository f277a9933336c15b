from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from api.deps import get_context
from core.context import AppContext
from core.models import ScrapingConfig

router = APIRouter(prefix="/api/scraping/queue", tags=["queue"])


@router.get("")
async def list_jobs(context: AppContext = Depends(get_context)):
    return [job.to_dict() for job in context.queue.get_all_jobs()]


@router.post("", status_code=202)
async def enqueue(
    payload: dict[str, Any] = Body(...),
    context: AppContext = Depends(get_context),
):
    job_id = context.queue.add_job(ScrapingConfig.from_dict(payload))
    return {"jobId": job_id, "status": "queued"}


@router.get("/{job_id}")
async def get_job(job_id: str, context: AppContext = Depends(get_context)):
    job = context.queue.get_job(job_id)
    if job is None:
        raise HTTPException(404, "Job not found")
    return job.to_dict()


@router.delete("/{job_id}")
async def remove_job(job_id: str, context: AppContext = Depends(get_context)):
    if context.queue.remove_job(job_id):
        return {"success": True, "id": job_id}
    job = context.queue.get_job(job_id)
    if job is None:
        raise HTTPException(404, "Job not found")
    raise HTTPException(409, f"Job {job_id} is {job.status} and can no longer be removed")
