"""Client endpoints: signup, listing, lifecycle actions and statistics."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from cadence.context import ServiceContext
from common.errors import NotFoundError, ValidationError
from ledger.models import Address, Client, ClientStatus, HistoryEntry

from ..deps import get_actor, get_ctx

router = APIRouter(prefix="/api/clients", tags=["clients"])


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class AddressBody(BaseModel):
    street: str = Field("", max_length=200)
    city: str = Field("", max_length=100)
    state: str = Field("", max_length=100)
    zip_code: str = Field("", max_length=20)
    country: str = Field("", max_length=100)


class ClientCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    plan_id: str = Field(..., min_length=1)
    email: str | None = Field(None, max_length=254)
    phone: str | None = Field(None, max_length=40)
    notes: str = Field("", max_length=2000)
    purchase_date: float | None = None
    address: AddressBody | None = None
    payment_method: str | None = Field(None, max_length=50)


class RenewBody(BaseModel):
    plan_id: str = Field(..., min_length=1)


class ReasonBody(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _client_to_dict(client: Client) -> dict[str, Any]:
    data = asdict(client)
    data["status"] = client.status.value
    return data


def _action_result(client: Client, include_renewal: bool = False) -> dict[str, Any]:
    result: dict[str, Any] = {
        "id": client.id,
        "name": client.name,
        "status": client.status.value,
    }
    if include_renewal:
        result["renewal_date"] = client.renewal_date
    return result


def _history_to_dict(entry: HistoryEntry) -> dict[str, Any]:
    data = asdict(entry)
    data["action"] = entry.action.value
    return data


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("")
def list_clients(
    status: str | None = Query(None, description="Filter by status"),
    ctx: ServiceContext = Depends(get_ctx),
):
    try:
        status_filter = ClientStatus(status) if status else None
    except ValueError:
        raise ValidationError(f"Unknown status {status!r}") from None
    clients = ctx.store.list_clients(status=status_filter)
    return {"clients": [_client_to_dict(c) for c in clients], "total": len(clients)}


@router.post("", status_code=201)
def create_client(
    body: ClientCreate,
    ctx: ServiceContext = Depends(get_ctx),
    actor: str = Depends(get_actor),
):
    client = ctx.lifecycle.create_client(
        name=body.name,
        plan_id=body.plan_id,
        actor_id=actor,
        purchase_date=body.purchase_date,
        email=body.email,
        phone=body.phone,
        notes=body.notes,
        address=Address(**body.address.model_dump()) if body.address else None,
        payment_method=body.payment_method,
    )
    return _client_to_dict(client)


@router.get("/statistics")
def client_statistics(ctx: ServiceContext = Depends(get_ctx)):
    return ctx.lifecycle.get_client_statistics()


@router.get("/{client_id}")
def get_client(client_id: str, ctx: ServiceContext = Depends(get_ctx)):
    client = ctx.store.get_client(client_id)
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")
    return _client_to_dict(client)


@router.get("/{client_id}/history")
def client_history(
    client_id: str,
    limit: int = Query(100, ge=1, le=1000),
    ctx: ServiceContext = Depends(get_ctx),
):
    entries = ctx.lifecycle.client_history(client_id, limit=limit)
    return {"history": [_history_to_dict(e) for e in entries]}


@router.post("/{client_id}/renew")
def renew_client(
    client_id: str,
    body: RenewBody,
    ctx: ServiceContext = Depends(get_ctx),
    actor: str = Depends(get_actor),
):
    client = ctx.lifecycle.renew_client(client_id, body.plan_id, actor)
    return _action_result(client, include_renewal=True)


@router.post("/{client_id}/cancel")
def cancel_client(
    client_id: str,
    body: ReasonBody,
    ctx: ServiceContext = Depends(get_ctx),
    actor: str = Depends(get_actor),
):
    return _action_result(ctx.lifecycle.cancel_client(client_id, body.reason, actor))


@router.post("/{client_id}/suspend")
def suspend_client(
    client_id: str,
    body: ReasonBody,
    ctx: ServiceContext = Depends(get_ctx),
    actor: str = Depends(get_actor),
):
    return _action_result(ctx.lifecycle.suspend_client(client_id, body.reason, actor))


@router.post("/{client_id}/reactivate")
def reactivate_client(
    client_id: str,
    ctx: ServiceContext = Depends(get_ctx),
    actor: str = Depends(get_actor),
):
    return _action_result(ctx.lifecycle.reactivate_client(client_id, actor))
