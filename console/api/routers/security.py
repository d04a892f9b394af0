from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from cadence.context import ServiceContext

from ..deps import get_ctx

router = APIRouter(prefix="/api/security", tags=["security"])


@router.get("/events")
def list_events(
    limit: int = Query(100, ge=1, le=1000),
    event: str | None = Query(None, description="Filter by event type"),
    user_id: str | None = Query(None),
    ctx: ServiceContext = Depends(get_ctx),
):
    security_log = ctx.security_log
    if event is not None:
        events = security_log.by_type(event)
        if user_id is not None:
            events = [e for e in events if e.user_id == user_id]
    elif user_id is not None:
        events = security_log.by_user(user_id)
    else:
        events = security_log.recent(limit)

    events = events[-limit:]
    return {"events": [asdict(e) for e in events], "total": len(events)}
