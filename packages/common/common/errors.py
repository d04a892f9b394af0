from __future__ import annotations


class NuvelonError(Exception):
    """Base class for every domain error raised by the console."""


class NotFoundError(NuvelonError):
    """A client, plan or job does not exist."""


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class DuplicateJobError(NuvelonError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job with id {job_id} already exists")
        self.job_id = job_id


class ValidationError(NuvelonError):
    """Bad input to a lifecycle or notification call."""


class TransientHandlerError(NuvelonError):
    """A job handler's own failure. Counted against the job's error budget."""


class ScheduleParseError(NuvelonError, ValueError):
    """Malformed cron expression."""
