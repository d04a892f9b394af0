"""Log query endpoints over the shared Watchtower database."""

from __future__ import annotations

import time
from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from cadence.context import ServiceContext

from ..deps import get_ctx

router = APIRouter(prefix="/api/logs", tags=["logs"])


@router.get("")
def query_logs(
    hours: float = Query(24, description="How many hours back to search"),
    level: str | None = Query(None, description="Filter by log level"),
    source: str | None = Query(None, description="Filter by source prefix"),
    search: str | None = Query(None, description="Search within message text"),
    limit: int = Query(100, ge=1, le=1000, description="Max rows to return"),
    ctx: ServiceContext = Depends(get_ctx),
):
    """Query logs with flexible filtering, newest first."""
    entries = ctx.watchtower.query(
        since=time.time() - hours * 3600,
        level=level.upper() if level else None,
        source=source,
        search=search,
        limit=limit,
    )
    return [asdict(e) for e in entries]


@router.get("/summary")
def logs_summary(
    hours: float = Query(24),
    ctx: ServiceContext = Depends(get_ctx),
):
    """Counts per source and level."""
    return {"hours": hours, "sources": ctx.watchtower.summary(hours=hours)}


@router.get("/errors")
def recent_errors(
    hours: float = Query(24),
    ctx: ServiceContext = Depends(get_ctx),
):
    return [asdict(e) for e in ctx.watchtower.errors_since(hours=hours)]
