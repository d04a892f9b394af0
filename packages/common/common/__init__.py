"""Nuvelon Common: shared infrastructure for the console and scheduler."""

from common.config import Settings, load_settings
from common.db import get_connection
from common.errors import (
    DuplicateJobError,
    JobNotFoundError,
    NotFoundError,
    NuvelonError,
    ScheduleParseError,
    TransientHandlerError,
    ValidationError,
)
from common.models import Notification, RenewalNotification, SecurityEvent
from common.notifications import NotificationDispatcher, OutboxTransport
from common.security import SecurityLog
from common.watchtower import Watchtower, WatchtowerHandler

__all__ = [
    "Settings", "load_settings",
    "get_connection",
    "NuvelonError", "NotFoundError", "JobNotFoundError", "DuplicateJobError",
    "ValidationError", "TransientHandlerError", "ScheduleParseError",
    "Notification", "RenewalNotification", "SecurityEvent",
    "NotificationDispatcher", "OutboxTransport",
    "SecurityLog",
    "Watchtower", "WatchtowerHandler",
]
