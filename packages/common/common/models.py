from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
import time


@dataclass
class LogEntry:
    timestamp: float
    level: str
    source: str
    message: str
    data: dict | None = None
    id: int | None = None


@dataclass
class SecurityEvent:
    """One entry of the in-memory security/audit event log."""

    event: str  # e.g. "CLIENT_RENEWED", "JOB_FAILED"
    ip: str = "system"
    user_id: str | None = None
    username: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error: str | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class EmailMessage:
    to: str
    subject: str
    body: str
    html: str | None = None


@dataclass
class SmsMessage:
    to: str
    message: str


@dataclass
class RenewalNotification:
    """A renewal reminder candidate. Generated, never persisted."""

    client_id: str
    client_name: str
    plan_name: str
    renewal_date: float
    days_until_renewal: int  # <= 0 means overdue
    email: str | None = None
    phone: str | None = None


@dataclass
class Notification:
    """History record of a single delivered notification."""

    id: str
    type: str            # "renewal", "system", "alert"
    title: str
    message: str
    recipient: str
    recipient_type: str  # "email", "phone", "admin"
    status: str = "sent"
    created_at: float = field(default_factory=time.time)
    sent_at: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
