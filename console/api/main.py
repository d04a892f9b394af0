"""Nuvelon Console API: FastAPI backend for the admin dashboard.

Serves client, plan, job and notification management and runs the
maintenance scheduler inside the app lifespan. The console is the only
process that fires the jobs; extra replicas start with
NUVELON_RUN_SCHEDULER=false.

Run with:
    uvicorn console.api.main:app --port 8710 --reload
or:
    nuvelon-console
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cadence.context import build_context
from cadence.jobs import register_jobs
from common.config import Settings, load_settings
from common.errors import NotFoundError, NuvelonError, ValidationError
from common.watchtower import attach_watchtower

from .routers import (
    clients,
    config_routes,
    health,
    jobs,
    logs,
    notifications,
    outbox,
    plans,
    security,
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger("console.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings

    # Wire API logs into the Watchtower database, WARNING+ only to avoid flooding
    watchtower, handler = attach_watchtower(
        settings.watchtower_db, source="console", level=logging.WARNING
    )

    ctx = build_context(settings, watchtower=watchtower, transport=app.state.transport)
    register_jobs(ctx)
    app.state.ctx = ctx
    if app.state.run_scheduler:
        ctx.scheduler.start()

    try:
        yield
    finally:
        ctx.scheduler.stop()
        await ctx.scheduler.wait_stopped()
        logging.getLogger().removeHandler(handler)
        watchtower.close()


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error(404, exc)


async def _invalid(request: Request, exc: ValidationError) -> JSONResponse:
    return _error(400, exc)


async def _domain_error(request: Request, exc: NuvelonError) -> JSONResponse:
    log.error("Unhandled %s on %s: %s", type(exc).__name__, request.url.path, exc)
    return _error(500, exc)


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    transport=None,
    run_scheduler: bool | None = None,
) -> FastAPI:
    settings = settings or load_settings()

    app = FastAPI(
        title="Nuvelon Console API",
        description="Subscription administration backend for the Nuvelon dashboard.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.transport = transport
    app.state.run_scheduler = settings.run_scheduler if run_scheduler is None else run_scheduler

    # -- CORS --------------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Errors ------------------------------------------------------------

    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(ValidationError, _invalid)
    app.add_exception_handler(NuvelonError, _domain_error)

    # -- Routers -----------------------------------------------------------

    app.include_router(jobs.router)
    app.include_router(clients.router)
    app.include_router(plans.router)
    app.include_router(notifications.router)
    app.include_router(security.router)
    app.include_router(outbox.router)
    app.include_router(logs.router)
    app.include_router(config_routes.router)
    app.include_router(health.router)

    return app


app = create_app()


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

def main() -> None:
    import uvicorn

    settings = app.state.settings
    log.info("Starting Nuvelon Console API on port %s", settings.port)
    uvicorn.run("console.api.main:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
