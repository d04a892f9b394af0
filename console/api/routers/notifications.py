"""Notification history (in-memory, newest last)."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from cadence.context import ServiceContext

from ..deps import get_ctx

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    limit: int = Query(100, ge=1, le=1000),
    type: str | None = Query(None, description="renewal, system or alert"),
    recipient: str | None = Query(None),
    ctx: ServiceContext = Depends(get_ctx),
):
    dispatcher = ctx.dispatcher
    if type is not None:
        items = dispatcher.get_notifications_by_type(type)
        if recipient is not None:
            items = [n for n in items if n.recipient == recipient]
    elif recipient is not None:
        items = dispatcher.get_notifications_by_recipient(recipient)
    else:
        items = dispatcher.get_notification_history(limit)

    items = items[-limit:]
    return {"notifications": [asdict(n) for n in items], "total": len(items)}
