from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
import time
import uuid


class ClientStatus(Enum):
    ACTIVE = "active"
    NEEDS_RENEWAL = "needs_renewal"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"


class HistoryAction(Enum):
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    RENEWED = "renewed"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"
    REACTIVATED = "reactivated"


@dataclass
class Plan:
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    description: str = ""
    duration_months: int = 1
    price: float = 0.0
    features: list[str] = field(default_factory=list)
    is_active: bool = True
    created_at: float = field(default_factory=time.time)

    @property
    def price_per_month(self) -> float:
        return self.price / self.duration_months if self.duration_months else self.price


@dataclass
class Address:
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""


@dataclass
class Client:
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    plan_id: str = ""
    purchase_date: float = field(default_factory=time.time)
    renewal_date: float = 0.0  # derived from purchase_date + plan duration
    status: ClientStatus = ClientStatus.ACTIVE
    email: str | None = None
    phone: str | None = None
    notes: str = ""
    address: Address = field(default_factory=Address)
    payment_method: str | None = None
    last_payment: float | None = None
    next_payment: float | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)


@dataclass
class HistoryEntry:
    """Audit-trail record written for every client mutation."""

    client_id: str
    action: HistoryAction
    actor: str  # user id, or "system" for automated changes
    old_values: dict[str, Any] = field(default_factory=dict)
    new_values: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    id: int | None = None


@dataclass
class ClientStatusUpdate:
    client_id: str
    old_status: ClientStatus
    new_status: ClientStatus
    reason: str
    updated_by: str = "system"
