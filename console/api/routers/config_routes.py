"""Config endpoints: read the running settings, edit the safe subset."""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends

from cadence.context import ServiceContext
from common.backup import list_backups
from common.config import EDITABLE_FIELDS, editable_view, save_config_overrides

from ..deps import get_actor, get_ctx

router = APIRouter(prefix="/api", tags=["config"])


@router.get("/config")
def get_config(ctx: ServiceContext = Depends(get_ctx)):
    s = ctx.settings
    return {
        "data_dir": s.data_dir,
        "timezone": s.timezone,
        "admin_emails": s.admin_emails,
        "allowed_origins": s.allowed_origins,
        "notification_history_size": s.notification_history_size,
        "security_log_size": s.security_log_size,
        "log_retention_days": s.log_retention_days,
        "max_backups": s.max_backups,
        "scheduler_poll_seconds": s.scheduler_poll_seconds,
        "port": s.port,
        "clients_db": str(s.clients_db),
        "outbox_db": str(s.outbox_db),
        "watchtower_db": str(s.watchtower_db),
        "backup_dir": str(s.backup_dir),
        "editable": editable_view(s),
    }


@router.put("/config")
def update_config(
    updates: dict = Body(...),
    ctx: ServiceContext = Depends(get_ctx),
    actor: str = Depends(get_actor),
):
    """Update editable values. Saved to the overrides file with a rolling backup."""
    filtered = {k: v for k, v in updates.items() if k in EDITABLE_FIELDS}
    if not filtered:
        return {"status": "no_changes", "editable_fields": list(EDITABLE_FIELDS.keys())}

    saved = save_config_overrides(ctx.settings, filtered)
    ctx.dispatcher.set_admin_emails(ctx.settings.admin_emails)
    ctx.security_log.log("CONFIG_UPDATED", user_id=actor, details={"fields": sorted(filtered)})
    return {"status": "ok", "saved": saved}


@router.get("/backups")
def get_backups(ctx: ServiceContext = Depends(get_ctx)):
    """Backup archives written by the data-backup job, newest first."""
    return list_backups(ctx.settings.backup_dir)
