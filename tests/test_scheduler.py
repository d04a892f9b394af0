import asyncio
import time

import pytest

from cadence.models import Job
from cadence.scheduler import JobScheduler
from common.errors import DuplicateJobError, JobNotFoundError, TransientHandlerError
from common.security import SecurityLog

from conftest import FakeClock


class Handler:
    """Awaitable job action that counts calls and can be made to fail."""

    def __init__(self, fail: bool = False) -> None:
        self.calls = 0
        self.fail = fail

    async def __call__(self) -> None:
        self.calls += 1
        if self.fail:
            raise TransientHandlerError("database unreachable")


def make_scheduler(clock=None, poll_interval=30):
    return JobScheduler(
        SecurityLog(),
        timezone="America/Sao_Paulo",
        poll_interval=poll_interval,
        clock=clock or FakeClock(),
    )


def make_job(handler, **kwargs):
    defaults = dict(id="status", name="Update statuses", schedule="0 6 * * *", max_errors=3)
    defaults.update(kwargs)
    return Job(handler=handler, **defaults)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def test_add_job_arms_next_run():
    clock = FakeClock()
    scheduler = make_scheduler(clock)
    scheduler.add_job(make_job(Handler()))

    job = scheduler.get_job("status")
    assert job.enabled
    assert job.next_run > clock()


def test_add_duplicate_job_leaves_original_untouched():
    scheduler = make_scheduler()
    original = Handler()
    scheduler.add_job(make_job(original, name="Original"))
    before = scheduler.get_job("status")

    with pytest.raises(DuplicateJobError):
        scheduler.add_job(make_job(Handler(), name="Impostor", schedule="*/5 * * * *"))

    assert scheduler.get_job("status") == before
    asyncio.run(scheduler.run_job("status"))
    assert original.calls == 1


def test_invalid_schedule_disables_job():
    scheduler = make_scheduler()
    scheduler.add_job(make_job(Handler(), schedule="every tuesday"))

    job = scheduler.get_job("status")
    assert job.enabled is False
    assert job.next_run is None


def test_disabled_job_is_not_armed():
    scheduler = make_scheduler()
    scheduler.add_job(make_job(Handler(), enabled=False))
    assert scheduler.get_job("status").next_run is None


def test_remove_job():
    scheduler = make_scheduler()
    scheduler.add_job(make_job(Handler()))
    assert scheduler.remove_job("status") is True
    assert scheduler.remove_job("status") is False
    assert scheduler.get_job("status") is None


def test_status_returns_snapshots():
    scheduler = make_scheduler()
    scheduler.add_job(make_job(Handler()))
    snapshot = scheduler.get_jobs_status()[0]

    asyncio.run(scheduler.run_job("status"))

    assert snapshot.run_count == 0
    assert snapshot.last_run is None
    assert scheduler.get_job("status").run_count == 1
    assert "handler" not in snapshot.to_dict()


def test_unknown_job_raises():
    scheduler = make_scheduler()
    with pytest.raises(JobNotFoundError):
        asyncio.run(scheduler.run_job("nope"))
    with pytest.raises(JobNotFoundError):
        scheduler.toggle_job("nope", True)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def test_success_resets_error_count_and_reschedules():
    clock = FakeClock()
    scheduler = make_scheduler(clock)
    handler = Handler(fail=True)
    job = make_job(handler)
    scheduler.add_job(job)

    asyncio.run(scheduler._execute_job(job))
    assert job.error_count == 1
    assert job.last_error == "database unreachable"

    handler.fail = False
    clock.advance(86400)
    asyncio.run(scheduler._execute_job(job))

    assert job.error_count == 0
    assert job.last_error is None
    assert job.last_run == clock()
    assert job.next_run > clock()


def test_timer_failures_disable_after_max_errors():
    clock = FakeClock()
    security_log = SecurityLog()
    scheduler = JobScheduler(security_log, clock=clock)
    job = make_job(Handler(fail=True), max_errors=3)
    scheduler.add_job(job)

    async def fire_three_times():
        for _ in range(3):
            # Timer-driven runs swallow the error
            await scheduler._execute_job(job)

    asyncio.run(fire_three_times())

    assert job.error_count == 3
    assert job.enabled is False
    assert job.next_run is None

    failures = security_log.by_type("JOB_FAILED")
    assert len(failures) == 3
    assert failures[-1].success is False
    assert failures[-1].details["job_id"] == "status"
    assert failures[-1].details["error_count"] == 3


def test_failure_below_threshold_advances_next_run():
    clock = FakeClock()
    scheduler = make_scheduler(clock)
    job = make_job(Handler(fail=True), schedule="*/30 * * * *")
    scheduler.add_job(job)

    clock.advance(3600)
    asyncio.run(scheduler._execute_job(job))

    assert job.enabled is True
    assert job.next_run > clock()


def test_manual_run_propagates_error_after_bookkeeping():
    security_log = SecurityLog()
    scheduler = JobScheduler(security_log, clock=FakeClock())
    scheduler.add_job(make_job(Handler(fail=True)))

    with pytest.raises(TransientHandlerError, match="database unreachable"):
        asyncio.run(scheduler.run_job("status"))

    assert scheduler.get_job("status").error_count == 1
    assert len(security_log.by_type("JOB_FAILED")) == 1


def test_timer_run_skips_disabled_job():
    scheduler = make_scheduler()
    handler = Handler()
    job = make_job(handler, enabled=False)
    scheduler.add_job(job)

    asyncio.run(scheduler._execute_job(job))
    assert handler.calls == 0


def test_manual_run_of_disabled_job_resets_errors_but_stays_disabled():
    scheduler = make_scheduler()
    handler = Handler(fail=True)
    scheduler.add_job(make_job(handler, max_errors=2))

    for _ in range(2):
        with pytest.raises(TransientHandlerError):
            asyncio.run(scheduler.run_job("status"))

    job = scheduler.get_job("status")
    assert job.enabled is False
    assert job.error_count == 2

    handler.fail = False
    asyncio.run(scheduler.run_job("status"))

    job = scheduler.get_job("status")
    assert handler.calls == 3
    assert job.error_count == 0
    assert job.enabled is False
    assert job.next_run is None


def test_toggle_rearms_in_the_future():
    clock = FakeClock()
    scheduler = make_scheduler(clock)
    scheduler.add_job(make_job(Handler()))

    disabled = scheduler.toggle_job("status", False)
    assert disabled.enabled is False
    assert disabled.next_run is None

    clock.advance(10 * 86400)
    enabled = scheduler.toggle_job("status", True)
    assert enabled.enabled is True
    assert enabled.next_run > clock()


# ---------------------------------------------------------------------------
# Re-entrancy
# ---------------------------------------------------------------------------


class BlockingHandler:
    def __init__(self) -> None:
        self.calls = 0
        self.release = None

    async def __call__(self) -> None:
        self.calls += 1
        await self.release.wait()


def test_timer_firing_skipped_while_running():
    scheduler = make_scheduler()
    handler = BlockingHandler()
    job = make_job(handler)
    scheduler.add_job(job)

    async def scenario():
        handler.release = asyncio.Event()
        first = asyncio.create_task(scheduler._execute_job(job))
        await asyncio.sleep(0)
        assert job.running is True

        await scheduler._execute_job(job)  # returns at once
        assert handler.calls == 1

        handler.release.set()
        await first

    asyncio.run(scenario())
    assert handler.calls == 1
    assert job.running is False


def test_manual_run_waits_for_running_execution():
    scheduler = make_scheduler()
    handler = BlockingHandler()
    job = make_job(handler)
    scheduler.add_job(job)

    async def scenario():
        handler.release = asyncio.Event()
        first = asyncio.create_task(scheduler._execute_job(job))
        await asyncio.sleep(0)

        manual = asyncio.create_task(scheduler.run_job("status"))
        await asyncio.sleep(0)
        assert handler.calls == 1

        handler.release.set()
        await first
        await manual

    asyncio.run(scenario())
    assert handler.calls == 2
    assert job.run_count == 2


# ---------------------------------------------------------------------------
# Removal while firing
# ---------------------------------------------------------------------------


def test_remove_job_drops_queued_firing():
    clock = FakeClock()
    scheduler = make_scheduler(clock)
    handler = Handler()
    job = make_job(handler)
    scheduler.add_job(job)
    job.next_run = clock() - 1

    async def scenario():
        scheduler._tick()
        queued = list(scheduler._tasks)
        assert len(queued) == 1

        assert scheduler.remove_job("status") is True
        await asyncio.gather(*queued, return_exceptions=True)
        return queued[0]

    task = asyncio.run(scenario())
    assert task.cancelled()
    assert handler.calls == 0
    assert job.run_count == 0


def test_firing_of_removed_job_is_skipped():
    scheduler = make_scheduler()
    stale_handler = Handler()
    stale = make_job(stale_handler)
    scheduler.add_job(stale)
    scheduler.remove_job("status")

    asyncio.run(scheduler._execute_job(stale))
    assert stale_handler.calls == 0

    # same id registered again: the old firing still must not run
    fresh_handler = Handler()
    scheduler.add_job(make_job(fresh_handler))
    asyncio.run(scheduler._execute_job(stale))
    assert stale_handler.calls == 0
    assert fresh_handler.calls == 0


def test_remove_job_lets_running_firing_finish():
    clock = FakeClock()
    scheduler = make_scheduler(clock)
    handler = BlockingHandler()
    job = make_job(handler)
    scheduler.add_job(job)
    job.next_run = clock() - 1

    async def scenario():
        handler.release = asyncio.Event()
        scheduler._tick()
        (task,) = scheduler._tasks
        await asyncio.sleep(0)
        assert job.running is True

        assert scheduler.remove_job("status") is True
        handler.release.set()
        await task
        return task

    task = asyncio.run(scenario())
    assert not task.cancelled()
    assert handler.calls == 1
    assert job.running is False
    assert job.error_count == 0
    assert scheduler.get_job("status") is None


# ---------------------------------------------------------------------------
# Polling loop
# ---------------------------------------------------------------------------


def test_loop_fires_due_jobs_and_stops():
    scheduler = make_scheduler(clock=time.time, poll_interval=0.01)
    handler = Handler()
    job = make_job(handler)
    scheduler.add_job(job)
    job.next_run = time.time() - 1

    async def scenario():
        scheduler.start()
        scheduler.start()  # idempotent
        assert scheduler.is_running()
        await asyncio.sleep(0.1)
        scheduler.stop()
        await scheduler.wait_stopped()

    asyncio.run(scenario())
    assert handler.calls == 1
    assert job.next_run > job.last_run
    assert scheduler.is_running() is False


def test_loop_survives_failing_job():
    security_log = SecurityLog()
    scheduler = JobScheduler(security_log, poll_interval=0.01)
    failing = make_job(Handler(fail=True), id="bad", max_errors=5)
    healthy_handler = Handler()
    healthy = make_job(healthy_handler, id="good")
    for job in (failing, healthy):
        scheduler.add_job(job)
        job.next_run = 0.0

    async def scenario():
        scheduler.start()
        await asyncio.sleep(0.1)
        scheduler.stop()
        await scheduler.wait_stopped()

    asyncio.run(scenario())
    assert healthy_handler.calls == 1
    assert failing.error_count == 1
    assert failing.enabled is True
    assert len(security_log.by_type("JOB_FAILED")) == 1
