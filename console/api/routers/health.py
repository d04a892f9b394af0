"""Health check endpoints."""
from __future__ import annotations

import platform
import sqlite3
import time
from pathlib import Path

from fastapi import APIRouter, Depends

from cadence.context import ServiceContext

from ..deps import get_ctx

router = APIRouter(tags=["health"])


def _db_ok(path: Path) -> bool:
    if not path.exists():
        return False
    try:
        conn = sqlite3.connect(str(path), timeout=2)
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
        return True
    except sqlite3.Error:
        return False


@router.get("/health")
async def health():
    """Basic health check."""
    return {"status": "ok", "timestamp": time.time()}


@router.get("/health/detailed")
async def health_detailed(ctx: ServiceContext = Depends(get_ctx)):
    """Component status: databases, scheduler and recent errors."""
    settings = ctx.settings
    databases = {
        "clients": settings.clients_db,
        "outbox": settings.outbox_db,
        "watchtower": settings.watchtower_db,
    }

    db_status = {}
    for name, path in databases.items():
        db_status[name] = {
            "exists": path.exists(),
            "healthy": _db_ok(path),
            "size_bytes": path.stat().st_size if path.exists() else 0,
        }

    jobs = ctx.scheduler.get_jobs_status()
    failing = [j.id for j in jobs if j.error_count > 0]
    disabled = [j.id for j in jobs if not j.enabled]

    all_healthy = all(d["healthy"] for d in db_status.values() if d["exists"])
    status = "ok" if all_healthy and not failing else "degraded"

    return {
        "status": status,
        "timestamp": time.time(),
        "databases": db_status,
        "scheduler": {
            "running": ctx.scheduler.is_running(),
            "timezone": ctx.scheduler.timezone,
            "jobs": len(jobs),
            "failing": failing,
            "disabled": disabled,
        },
        "errors_24h": len(ctx.watchtower.errors_since(hours=24)),
        "system": {
            "python_version": platform.python_version(),
            "platform": platform.system(),
            "hostname": platform.node(),
        },
    }
