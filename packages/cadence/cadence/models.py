from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable

JobHandler = Callable[[], Awaitable[Any]]


@dataclass
class Job:
    id: str
    name: str
    schedule: str  # cron: "0 9 * * *"
    handler: JobHandler
    description: str = ""
    enabled: bool = True
    last_run: float | None = None
    next_run: float | None = None
    error_count: int = 0
    max_errors: int = 3
    last_error: str | None = None
    run_count: int = 0
    running: bool = False

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            id=self.id,
            name=self.name,
            description=self.description,
            schedule=self.schedule,
            enabled=self.enabled,
            last_run=self.last_run,
            next_run=self.next_run,
            error_count=self.error_count,
            max_errors=self.max_errors,
            last_error=self.last_error,
            run_count=self.run_count,
            running=self.running,
        )


@dataclass(frozen=True)
class JobSnapshot:
    """Read-only copy of a job's observable fields (no handler)."""

    id: str
    name: str
    description: str
    schedule: str
    enabled: bool
    last_run: float | None
    next_run: float | None
    error_count: int
    max_errors: int
    last_error: str | None = None
    run_count: int = 0
    running: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "schedule": self.schedule,
            "enabled": self.enabled,
            "last_run": self.last_run,
            "next_run": self.next_run,
            "error_count": self.error_count,
            "max_errors": self.max_errors,
            "last_error": self.last_error,
            "run_count": self.run_count,
            "running": self.running,
        }
