"""Job scheduler endpoints: status, manual run and enable/disable.

Routes are ``async`` so registry changes happen on the event loop that
runs the scheduler.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from cadence.context import ServiceContext
from common.errors import NotFoundError

from ..deps import get_actor, get_ctx

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


class RunJobBody(BaseModel):
    job_id: str = Field(..., min_length=1)


class ToggleBody(BaseModel):
    job_id: str = Field(..., min_length=1)
    enabled: bool


@router.get("")
async def list_jobs(ctx: ServiceContext = Depends(get_ctx)):
    return {"jobs": [job.to_dict() for job in ctx.scheduler.get_jobs_status()]}


@router.get("/{job_id}")
async def get_job(job_id: str, ctx: ServiceContext = Depends(get_ctx)):
    job = ctx.scheduler.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job.to_dict()


@router.post("/run")
async def run_job(
    body: RunJobBody,
    ctx: ServiceContext = Depends(get_ctx),
    actor: str = Depends(get_actor),
):
    """Run a job immediately. The handler's error message comes back as a 500."""
    log.info("Manual run of %s requested by %s", body.job_id, actor)
    try:
        await ctx.scheduler.run_job(body.job_id)
    except NotFoundError:
        raise
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return {"success": True, "message": f"Job {body.job_id} executed successfully"}


@router.put("/toggle")
async def toggle_job(
    body: ToggleBody,
    ctx: ServiceContext = Depends(get_ctx),
    actor: str = Depends(get_actor),
):
    job = ctx.scheduler.toggle_job(body.job_id, body.enabled)
    ctx.security_log.log(
        "JOB_TOGGLED",
        user_id=actor,
        details={"job_id": job.id, "enabled": job.enabled},
    )
    return {
        "success": True,
        "message": f"Job {job.id} {'enabled' if job.enabled else 'disabled'}",
        "job": job.to_dict(),
    }
