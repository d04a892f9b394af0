from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from cadence.cron import next_cron_time
from cadence.models import Job, JobSnapshot
from common.errors import DuplicateJobError, JobNotFoundError, ScheduleParseError
from common.security import SecurityLog

log = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 30


def _task_name(job_id: str) -> str:
    return f"job:{job_id}"


class JobScheduler:
    """Async scheduler that owns the recurring jobs and fires them on time.

    A polling loop looks for enabled jobs whose ``next_run`` has passed and
    launches each firing as its own task. Every job has a lock: a timer
    firing is skipped while the job is still running, a manual run waits.
    """

    def __init__(
        self,
        security_log: SecurityLog,
        timezone: str = "America/Sao_Paulo",
        poll_interval: float = POLL_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._security = security_log
        self._tz = timezone
        self._poll_interval = poll_interval
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()
        self._running = False
        self._wake: asyncio.Event | None = None
        self._loop_task: asyncio.Task | None = None

    @property
    def timezone(self) -> str:
        return self._tz

    # -- registry ---------------------------------------------------------------

    def add_job(self, job: Job) -> None:
        if job.id in self._jobs:
            raise DuplicateJobError(job.id)

        self._jobs[job.id] = job
        self._locks[job.id] = asyncio.Lock()
        if job.enabled:
            self._schedule_job(job)
        log.info("Job %s (%s) registered, next_run=%s", job.id, job.schedule, job.next_run)

    def remove_job(self, job_id: str) -> bool:
        job = self._jobs.pop(job_id, None)
        if job is None:
            return False
        self._locks.pop(job_id, None)
        # Firings queued but not started are dropped; one in flight finishes.
        if not job.running:
            for task in list(self._tasks):
                if task.get_name() == _task_name(job_id):
                    task.cancel()
        log.info("Job %s removed", job_id)
        return True

    def get_job(self, job_id: str) -> JobSnapshot | None:
        job = self._jobs.get(job_id)
        return job.snapshot() if job else None

    def get_jobs_status(self) -> list[JobSnapshot]:
        return [job.snapshot() for job in self._jobs.values()]

    def toggle_job(self, job_id: str, enabled: bool) -> JobSnapshot:
        job = self._require(job_id)
        job.enabled = enabled
        if enabled:
            self._schedule_job(job)
        else:
            job.next_run = None
        log.info("Job %s %s", job.name, "enabled" if job.enabled else "disabled")
        return job.snapshot()

    async def run_job(self, job_id: str) -> None:
        """Run a job now, whatever its schedule or enabled state.

        Handler errors are counted like any other failure, then re-raised.
        """
        job = self._require(job_id)
        log.info("Manual run of job %s", job.name)
        await self._execute_job(job, manual=True)

    # -- loop -------------------------------------------------------------------

    def start(self) -> None:
        """Launch the polling loop on the running event loop. Idempotent."""
        if self._running:
            return
        self._running = True
        self._wake = asyncio.Event()
        self._loop_task = asyncio.get_running_loop().create_task(self._loop())

    def stop(self) -> None:
        """Stop polling. Executions already in flight are left to finish."""
        self._running = False
        if self._wake is not None:
            self._wake.set()

    def is_running(self) -> bool:
        return self._running

    async def wait_stopped(self) -> None:
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

    async def run(self) -> None:
        """Main scheduler loop. Runs until stopped or cancelled."""
        self._running = True
        self._wake = asyncio.Event()
        await self._loop()

    async def _loop(self) -> None:
        log.info("Scheduler loop started (poll every %ss)", self._poll_interval)

        enabled = [job for job in self._jobs.values() if job.enabled]
        log.info("Loaded %d enabled job(s)", len(enabled))
        for job in enabled:
            log.info("  - %s (%s) next_run=%s", job.name, job.schedule, job.next_run)

        while self._running:
            try:
                self._tick()
            except Exception:
                log.exception("Unexpected error in scheduler tick")

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass
            except asyncio.CancelledError:
                log.info("Scheduler sleep cancelled")
                break

        self._running = False
        self._wake = None
        log.info("Scheduler loop stopped")

    def _tick(self) -> None:
        """One pass: find due jobs and launch them."""
        now = self._clock()
        due = [
            job for job in self._jobs.values()
            if job.enabled and job.next_run is not None and job.next_run <= now
        ]
        if not due:
            return

        log.info("Found %d due job(s)", len(due))
        for job in due:
            if self._locks[job.id].locked():
                log.info("Job %s still running, skipping this firing", job.name)
                continue
            task = asyncio.get_running_loop().create_task(
                self._execute_job(job), name=_task_name(job.id)
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    # -- execution --------------------------------------------------------------

    def _schedule_job(self, job: Job) -> None:
        try:
            job.next_run = next_cron_time(job.schedule, self._clock(), self._tz)
        except ScheduleParseError:
            log.exception("Error scheduling job %s", job.name)
            job.enabled = False
            job.next_run = None

    async def _execute_job(self, job: Job, manual: bool = False) -> None:
        if not job.enabled and not manual:
            return

        lock = self._locks.get(job.id)
        if lock is None or self._jobs.get(job.id) is not job:
            log.info("Job %s was removed, skipping this firing", job.name)
            return
        if not manual and lock.locked():
            log.info("Job %s still running, skipping this firing", job.name)
            return

        async with lock:
            if not job.enabled and not manual:
                return

            log.info("Starting job %s", job.name)
            job.running = True
            job.last_run = self._clock()
            job.run_count += 1
            try:
                await job.handler()
            except Exception as exc:
                self._record_failure(job, exc)
                if manual:
                    raise
            else:
                job.error_count = 0
                job.last_error = None
                if job.enabled:
                    self._schedule_job(job)
                log.info("Job %s completed (run #%d)", job.name, job.run_count)
            finally:
                job.running = False

    def _record_failure(self, job: Job, exc: Exception) -> None:
        job.error_count += 1
        job.last_error = str(exc)
        log.error(
            "Job %s failed (%d/%d): %s",
            job.name, job.error_count, job.max_errors, exc, exc_info=exc,
        )
        self._security.log(
            "JOB_FAILED",
            details={
                "job_id": job.id,
                "job_name": job.name,
                "error": str(exc),
                "error_count": job.error_count,
            },
            success=False,
            error=str(exc),
        )

        if job.error_count >= job.max_errors:
            job.enabled = False
            job.next_run = None
            log.error("Job %s disabled after %d consecutive errors", job.name, job.error_count)
        elif job.enabled:
            # Advance so a failing job doesn't retry every poll.
            self._schedule_job(job)

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job
