"""Security / audit event log.

An append-mostly, capped in-memory list of :class:`SecurityEvent` records.
Every event is also emitted through the ``nuvelon.security`` logger with
the event attached as ``record.data``, so a Watchtower handler on the root
logger persists it.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import asdict
from typing import Any

from common.models import SecurityEvent

log = logging.getLogger("nuvelon.security")

DEFAULT_MAX_EVENTS = 1000


class SecurityLog:
    def __init__(self, max_events: int = DEFAULT_MAX_EVENTS) -> None:
        self._events: deque[SecurityEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    @property
    def max_events(self) -> int:
        return self._events.maxlen or 0

    def log(
        self,
        event: str,
        *,
        ip: str = "system",
        user_id: str | None = None,
        username: str | None = None,
        details: dict[str, Any] | None = None,
        success: bool = True,
        error: str | None = None,
    ) -> SecurityEvent:
        """Append an event. Oldest entries are dropped once the cap is hit."""
        entry = SecurityEvent(
            event=event,
            ip=ip,
            user_id=user_id,
            username=username,
            details=details or {},
            success=success,
            error=error,
        )
        with self._lock:
            self._events.append(entry)

        level = logging.INFO if success else logging.WARNING
        log.log(level, "%s (%s)", event, "ok" if success else error or "failed",
                extra={"data": asdict(entry)})
        return entry

    # -- read ------------------------------------------------------------------

    def recent(self, limit: int = 100) -> list[SecurityEvent]:
        with self._lock:
            events = list(self._events)
        return events[-limit:] if limit > 0 else []

    def by_type(self, event: str) -> list[SecurityEvent]:
        with self._lock:
            return [e for e in self._events if e.event == event]

    def by_user(self, user_id: str) -> list[SecurityEvent]:
        with self._lock:
            return [e for e in self._events if e.user_id == user_id]

    def by_ip(self, ip: str) -> list[SecurityEvent]:
        with self._lock:
            return [e for e in self._events if e.ip == ip]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    # -- maintenance -----------------------------------------------------------

    def cleanup_older_than(self, seconds: float) -> int:
        """Drop events older than *seconds*. Returns how many were removed."""
        cutoff = time.time() - seconds
        with self._lock:
            kept = [e for e in self._events if e.timestamp > cutoff]
            removed = len(self._events) - len(kept)
            self._events.clear()
            self._events.extend(kept)
        return removed
