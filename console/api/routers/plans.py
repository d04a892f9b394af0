from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from cadence.context import ServiceContext
from ledger.models import Plan

from ..deps import get_ctx

router = APIRouter(prefix="/api/plans", tags=["plans"])


class PlanCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    duration_months: int = Field(..., ge=1, le=120)
    price: float = Field(..., ge=0)
    description: str = Field("", max_length=500)
    features: list[str] = Field(default_factory=list)
    is_active: bool = True


def _plan_to_dict(plan: Plan) -> dict:
    data = asdict(plan)
    data["price_per_month"] = round(plan.price_per_month, 2)
    return data


@router.get("")
def list_plans(
    active_only: bool = Query(False),
    ctx: ServiceContext = Depends(get_ctx),
):
    return {"plans": [_plan_to_dict(p) for p in ctx.store.list_plans(active_only=active_only)]}


@router.post("", status_code=201)
def create_plan(body: PlanCreate, ctx: ServiceContext = Depends(get_ctx)):
    plan = Plan(
        name=body.name,
        duration_months=body.duration_months,
        price=body.price,
        description=body.description,
        features=body.features,
        is_active=body.is_active,
    )
    ctx.store.save_plan(plan)
    return _plan_to_dict(plan)
