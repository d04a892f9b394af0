import asyncio
import sqlite3
import threading
import time

import pytest

from cadence.context import build_context
from cadence.jobs import build_jobs, find_health_issues, format_weekly_report, register_jobs
from cadence.models import Job
from common.errors import TransientHandlerError
from ledger.dates import SECONDS_PER_DAY
from ledger.models import Client, ClientStatus, Plan

from conftest import FakeTransport


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def ctx(settings, fake_transport):
    ctx = build_context(settings, transport=fake_transport)
    ctx.store.save_plan(Plan(id="monthly", name="Monthly Basic", duration_months=1, price=29.90))
    register_jobs(ctx)
    yield ctx
    ctx.watchtower.close()


def add_client(ctx, days, name="Client", email=None, status=ClientStatus.ACTIVE):
    """Client renewing *days* days from the real clock (rounded up)."""
    renewal = time.time() + days * SECONDS_PER_DAY - 60
    client = Client(
        name=name,
        plan_id="monthly",
        purchase_date=renewal - 30 * SECONDS_PER_DAY,
        renewal_date=renewal,
        status=status,
        email=email,
    )
    ctx.store.save_client(client)
    return client


def run(ctx, job_id):
    asyncio.run(ctx.scheduler.run_job(job_id))


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def test_builtin_jobs(ctx):
    jobs = {job.id: job for job in build_jobs(ctx)}
    assert {job_id: (job.schedule, job.max_errors) for job_id, job in jobs.items()} == {
        "update-client-statuses": ("0 6 * * *", 3),
        "generate-renewal-notifications": ("0 9 * * *", 3),
        "data-backup": ("0 2 * * 0", 2),
        "cleanup-logs": ("0 3 1 * *", 2),
        "weekly-report": ("0 8 * * 1", 2),
        "system-health-check": ("*/30 * * * *", 5),
    }


def test_register_jobs(ctx):
    """All jobs are scheduled and the registration is audited."""
    statuses = ctx.scheduler.get_jobs_status()
    assert len(statuses) == 6
    assert all(job.enabled and job.next_run > time.time() for job in statuses)

    event = ctx.security_log.by_type("AUTOMATION_INITIALIZED")[0]
    assert len(event.details["jobs"]) == 6
    assert event.details["timezone"] == "America/Sao_Paulo"


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def test_update_client_statuses_job(ctx):
    due = add_client(ctx, 2, name="Due")
    add_client(ctx, 20, name="Fine")

    run(ctx, "update-client-statuses")

    assert ctx.store.get_client(due.id).status is ClientStatus.NEEDS_RENEWAL
    event = ctx.security_log.by_type("CLIENT_STATUS_UPDATE")[0]
    assert event.details["updated_clients"] == 1
    assert event.details["updates"][0]["new_status"] == "needs_renewal"


def test_update_statuses_without_changes_is_quiet(ctx):
    add_client(ctx, 20)
    run(ctx, "update-client-statuses")
    assert ctx.security_log.by_type("CLIENT_STATUS_UPDATE") == []


def test_renewal_job_skips_failed_sends(ctx, fake_transport):
    add_client(ctx, 3, name="Ana", email="ana@example.com")
    add_client(ctx, 1, name="Bruno", email="bruno@example.com")
    add_client(ctx, 5, name="Carla", email="carla@example.com")
    fake_transport.fail_for.add("bruno@example.com")

    run(ctx, "generate-renewal-notifications")

    assert [e.to for e in fake_transport.emails] == ["ana@example.com"]
    event = ctx.security_log.by_type("RENEWAL_NOTIFICATIONS_SENT")[0]
    assert event.details["notifications_count"] == 2
    assert event.details["sent"] == 1
    assert len(ctx.security_log.by_type("NOTIFICATION_FAILED")) == 1
    assert ctx.scheduler.get_job("generate-renewal-notifications").error_count == 0


def test_data_backup_job(ctx, settings):
    add_client(ctx, 10)
    settings.max_backups = 1

    run(ctx, "data-backup")
    run(ctx, "data-backup")

    archives = list(settings.backup_dir.glob("*.nba"))
    assert len(archives) == 1
    events = ctx.security_log.by_type("DATA_BACKUP_COMPLETED")
    assert len(events) == 2
    assert events[1].details["pruned"] and events[1].details["checksum"].startswith("sha256:")


def test_cleanup_logs_job(ctx, settings):
    old = time.time() - 100 * SECONDS_PER_DAY
    conn = sqlite3.connect(str(settings.watchtower_db))
    conn.execute(
        "INSERT INTO logs (timestamp, level, source, message) VALUES (?, 'INFO', 'cadence', 'old')",
        (old,),
    )
    conn.commit()
    conn.close()
    ctx.watchtower.log("INFO", "cadence", "recent")
    ctx.security_log.log("STALE").timestamp = old

    run(ctx, "cleanup-logs")

    assert [e.message for e in ctx.watchtower.query()] == ["recent"]
    assert ctx.security_log.by_type("STALE") == []
    event = ctx.security_log.by_type("LOGS_CLEANUP_COMPLETED")[0]
    assert event.details["purged_logs"] == 1
    assert event.details["purged_security_events"] == 1


def test_weekly_report_job(ctx, fake_transport):
    add_client(ctx, 20)
    add_client(ctx, 2)

    run(ctx, "weekly-report")

    assert [e.to for e in fake_transport.emails] == ["ops@nuvelon.test", "cto@nuvelon.test"]
    email = fake_transport.emails[0]
    assert email.subject == "[SYSTEM] Weekly Report - Nuvelon"
    assert "Total clients: 2" in email.body
    assert "Monthly revenue: R$ 59.80" in email.body
    event = ctx.security_log.by_type("WEEKLY_REPORT_GENERATED")[0]
    assert event.details["statistics"]["total_clients"] == 2


def test_format_weekly_report():
    text = format_weekly_report({
        "total_clients": 10,
        "active_clients": 7,
        "needs_renewal": 2,
        "expiring_soon": 3,
        "monthly_revenue": 1234.5,
    })
    assert "Active clients: 7" in text
    assert "Monthly revenue: R$ 1234.50" in text


def test_health_check_quiet_when_healthy(ctx, fake_transport):
    add_client(ctx, 20)
    run(ctx, "system-health-check")
    assert fake_transport.emails == []


def test_health_check_alerts_on_issues(ctx):
    for i in range(6):
        add_client(ctx, 2, name=f"Soon {i}")
    for i in range(11):
        add_client(ctx, 1, name=f"Due {i}", status=ClientStatus.NEEDS_RENEWAL)

    run(ctx, "system-health-check")

    alerts = ctx.dispatcher.get_notifications_by_type("alert")
    assert len(alerts) == 2
    assert alerts[0].metadata == {"severity": "medium"}
    assert "11 clients need renewal" in alerts[0].message
    assert "17 clients expiring within 7 days" in alerts[0].message


def test_health_check_reports_failing_jobs(ctx):
    async def broken():
        raise RuntimeError("disk full")

    ctx.scheduler.add_job(Job(
        id="broken", name="Broken", schedule="0 0 * * *", handler=broken,
    ))
    with pytest.raises(RuntimeError):
        run(ctx, "broken")

    run(ctx, "system-health-check")

    alert = ctx.dispatcher.get_notifications_by_type("alert")[0]
    assert "1 job(s) with errors" in alert.message


def test_health_check_failure_sends_critical_alert(ctx, fake_transport, monkeypatch):
    def explode():
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(ctx.lifecycle, "get_client_statistics", explode)

    with pytest.raises(TransientHandlerError, match="database is locked"):
        run(ctx, "system-health-check")

    alert = ctx.dispatcher.get_notifications_by_type("alert")[0]
    assert alert.metadata == {"severity": "critical"}
    assert alert.title == "System Health Check Failed"
    job = ctx.scheduler.get_job("system-health-check")
    assert job.error_count == 1
    assert job.enabled


def test_handler_failure_counts_against_job(ctx, monkeypatch):
    def explode():
        raise RuntimeError("store unavailable")

    monkeypatch.setattr(ctx.lifecycle, "update_client_statuses", explode)

    with pytest.raises(TransientHandlerError):
        run(ctx, "update-client-statuses")

    event = ctx.security_log.by_type("JOB_FAILED")[0]
    assert event.details["job_id"] == "update-client-statuses"
    assert event.error == "store unavailable"


def test_find_health_issues_thresholds():
    stats = {"needs_renewal": 10, "expiring_soon": 5}
    assert find_health_issues(stats, []) == []

    stats = {"needs_renewal": 11, "expiring_soon": 6}
    issues = find_health_issues(stats, [])
    assert issues == ["11 clients need renewal", "6 clients expiring within 7 days"]


# ---------------------------------------------------------------------------
# Event loop
# ---------------------------------------------------------------------------


def test_store_work_runs_in_worker_thread(ctx, monkeypatch):
    loop_thread = threading.get_ident()
    seen = []
    real = ctx.lifecycle.update_client_statuses

    def tracking():
        seen.append(threading.get_ident())
        return real()

    monkeypatch.setattr(ctx.lifecycle, "update_client_statuses", tracking)
    run(ctx, "update-client-statuses")

    assert len(seen) == 1
    assert seen[0] != loop_thread


def test_event_loop_stays_free_during_slow_job(ctx, monkeypatch):
    started = threading.Event()
    release = threading.Event()

    def slow():
        started.set()
        release.wait(2)
        return []

    monkeypatch.setattr(ctx.lifecycle, "update_client_statuses", slow)

    async def scenario():
        job = asyncio.create_task(ctx.scheduler.run_job("update-client-statuses"))
        while not started.is_set():
            await asyncio.sleep(0.01)
        still_running = not job.done()
        release.set()
        await job
        return still_running

    assert asyncio.run(scenario()) is True
