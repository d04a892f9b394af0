from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from cadence.context import ServiceContext
from common.outbox import list_messages

from ..deps import get_ctx

router = APIRouter(prefix="/api/outbox", tags=["outbox"])


@router.get("")
def list_outbox(
    channel: str | None = Query(None, description="email or sms"),
    recipient: str | None = None,
    status: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    ctx: ServiceContext = Depends(get_ctx),
):
    messages = list_messages(
        ctx.settings.outbox_db,
        channel=channel,
        recipient=recipient,
        status=status,
        limit=limit,
    )
    return [asdict(m) for m in messages]
