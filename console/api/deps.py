"""Request-scoped access to the services built in the app lifespan."""

from __future__ import annotations

from fastapi import Header, Request

from cadence.context import ServiceContext


def get_ctx(request: Request) -> ServiceContext:
    return request.app.state.ctx


def get_actor(x_actor_id: str = Header("admin")) -> str:
    """Who is performing the action. There is no login; the header is trusted."""
    return x_actor_id
