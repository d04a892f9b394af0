"""The six built-in maintenance jobs.

Each handler takes the :class:`ServiceContext` and is bound to it with
``functools.partial`` when the job is built. A handler wraps its own
failure in :class:`TransientHandlerError` so the scheduler counts it.
SQLite and transport calls run in worker threads via ``asyncio.to_thread``
so the scheduler loop keeps polling while a job works.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time

from cadence.context import ServiceContext
from cadence.models import Job, JobSnapshot
from common.backup import export_backup, prune_backups
from common.errors import TransientHandlerError
from ledger.dates import SECONDS_PER_DAY

log = logging.getLogger(__name__)

NEEDS_RENEWAL_THRESHOLD = 10
EXPIRING_SOON_THRESHOLD = 5


async def update_client_statuses(ctx: ServiceContext) -> None:
    log.info("Starting client status update")
    try:
        updates = await asyncio.to_thread(ctx.lifecycle.update_client_statuses)
    except Exception as exc:
        log.exception("Error updating client statuses")
        raise TransientHandlerError(str(exc)) from exc

    if updates:
        log.info("Updated %d client statuses", len(updates))
        ctx.security_log.log(
            "CLIENT_STATUS_UPDATE",
            details={
                "updated_clients": len(updates),
                "updates": [
                    {
                        "client_id": u.client_id,
                        "old_status": u.old_status.value,
                        "new_status": u.new_status.value,
                        "reason": u.reason,
                    }
                    for u in updates
                ],
            },
        )


async def generate_renewal_notifications(ctx: ServiceContext) -> None:
    log.info("Starting renewal notifications generation")
    try:
        notifications = await asyncio.to_thread(ctx.lifecycle.generate_renewal_notifications)
    except Exception as exc:
        log.exception("Error generating renewal notifications")
        raise TransientHandlerError(str(exc)) from exc

    if not notifications:
        return

    sent = 0
    for notification in notifications:
        try:
            await asyncio.to_thread(ctx.dispatcher.send_renewal_notification, notification)
            sent += 1
        except Exception:
            # logged and skipped
            log.exception("Error sending renewal notification to %s", notification.client_name)

    log.info("Generated %d renewal notifications, %d sent", len(notifications), sent)
    ctx.security_log.log(
        "RENEWAL_NOTIFICATIONS_SENT",
        details={
            "notifications_count": len(notifications),
            "sent": sent,
            "clients": [
                {
                    "client_id": n.client_id,
                    "client_name": n.client_name,
                    "days_until_renewal": n.days_until_renewal,
                }
                for n in notifications
            ],
        },
    )


async def data_backup(ctx: ServiceContext) -> None:
    log.info("Starting data backup")
    settings = ctx.settings
    try:
        result = await asyncio.to_thread(export_backup, settings.data_path, settings.backup_dir)
        pruned = await asyncio.to_thread(prune_backups, settings.backup_dir, settings.max_backups)
    except Exception as exc:
        log.exception("Error during data backup")
        raise TransientHandlerError(str(exc)) from exc

    log.info("Data backup written to %s", result["archive_path"])
    ctx.security_log.log(
        "DATA_BACKUP_COMPLETED",
        details={
            "backup_type": "scheduled",
            "archive": result["archive_path"],
            "size_bytes": result["size_bytes"],
            "checksum": result["checksum"],
            "pruned": pruned,
        },
    )


async def cleanup_logs(ctx: ServiceContext) -> None:
    log.info("Starting logs cleanup")
    retention = ctx.settings.log_retention_days * SECONDS_PER_DAY
    cutoff = time.time() - retention
    try:
        purged_logs = await asyncio.to_thread(ctx.watchtower.purge_before, cutoff)
        purged_events = ctx.security_log.cleanup_older_than(retention)
    except Exception as exc:
        log.exception("Error during logs cleanup")
        raise TransientHandlerError(str(exc)) from exc

    log.info("Logs cleanup removed %d log row(s), %d security event(s)", purged_logs, purged_events)
    ctx.security_log.log(
        "LOGS_CLEANUP_COMPLETED",
        details={
            "cutoff": cutoff,
            "retention_days": ctx.settings.log_retention_days,
            "purged_logs": purged_logs,
            "purged_security_events": purged_events,
        },
    )


def format_weekly_report(stats: dict) -> str:
    return (
        "Weekly report generated.\n\n"
        f"Total clients: {stats['total_clients']}\n"
        f"Active clients: {stats['active_clients']}\n"
        f"Need renewal: {stats['needs_renewal']}\n"
        f"Expiring within 7 days: {stats['expiring_soon']}\n"
        f"Monthly revenue: R$ {stats['monthly_revenue']:.2f}"
    )


async def weekly_report(ctx: ServiceContext) -> None:
    log.info("Starting weekly report generation")
    recipients = ctx.dispatcher.admin_emails
    try:
        stats = await asyncio.to_thread(ctx.lifecycle.get_client_statistics)
        await asyncio.to_thread(
            ctx.dispatcher.send_system_notification,
            "Weekly Report",
            format_weekly_report(stats),
            recipients,
        )
    except Exception as exc:
        log.exception("Error generating weekly report")
        raise TransientHandlerError(str(exc)) from exc

    log.info("Weekly report sent to %d admin(s)", len(recipients))
    ctx.security_log.log(
        "WEEKLY_REPORT_GENERATED",
        details={
            "period": "weekly",
            "generated_at": time.time(),
            "statistics": stats,
            "recipients": recipients,
        },
    )


def find_health_issues(stats: dict, jobs: list[JobSnapshot]) -> list[str]:
    failed_jobs = [job for job in jobs if job.error_count > 0]

    issues: list[str] = []
    if failed_jobs:
        issues.append(f"{len(failed_jobs)} job(s) with errors")
    if stats["needs_renewal"] > NEEDS_RENEWAL_THRESHOLD:
        issues.append(f"{stats['needs_renewal']} clients need renewal")
    if stats["expiring_soon"] > EXPIRING_SOON_THRESHOLD:
        issues.append(f"{stats['expiring_soon']} clients expiring within 7 days")
    return issues


async def system_health_check(ctx: ServiceContext) -> None:
    log.info("Starting system health check")
    try:
        stats = await asyncio.to_thread(ctx.lifecycle.get_client_statistics)
        issues = find_health_issues(stats, ctx.scheduler.get_jobs_status())
        if issues:
            severity = "high" if len(issues) > 3 else "medium"
            await asyncio.to_thread(
                ctx.dispatcher.send_alert,
                "System Issues Detected",
                "The following issues were detected:\n" + "\n".join(issues),
                severity,
            )
    except Exception as exc:
        log.exception("Error during system health check")
        await asyncio.to_thread(
            ctx.dispatcher.send_alert,
            "System Health Check Failed",
            f"The automatic system health check failed: {exc}",
            "critical",
        )
        raise TransientHandlerError(str(exc)) from exc

    log.info("System health check completed (%d issue(s))", len(issues))


_BUILTIN_JOBS = [
    # (id, name, schedule, max_errors, handler, description)
    ("update-client-statuses", "Update Client Statuses", "0 6 * * *", 3,
     update_client_statuses, "Daily at 06:00: flag clients due for renewal"),
    ("generate-renewal-notifications", "Generate Renewal Notifications", "0 9 * * *", 3,
     generate_renewal_notifications, "Daily at 09:00: send 7/3/1-day and overdue reminders"),
    ("data-backup", "Data Backup", "0 2 * * 0", 2,
     data_backup, "Sundays at 02:00: archive the databases"),
    ("cleanup-logs", "Old Logs Cleanup", "0 3 1 * *", 2,
     cleanup_logs, "Monthly on the 1st at 03:00: purge logs past retention"),
    ("weekly-report", "Weekly Report", "0 8 * * 1", 2,
     weekly_report, "Mondays at 08:00: email statistics to admins"),
    ("system-health-check", "System Health Check", "*/30 * * * *", 5,
     system_health_check, "Every 30 minutes: alert on job errors and renewal backlog"),
]


def build_jobs(ctx: ServiceContext) -> list[Job]:
    return [
        Job(
            id=job_id,
            name=name,
            schedule=schedule,
            max_errors=max_errors,
            handler=functools.partial(handler, ctx),
            description=description,
        )
        for job_id, name, schedule, max_errors, handler, description in _BUILTIN_JOBS
    ]


def register_jobs(ctx: ServiceContext) -> list[Job]:
    """Add the built-in jobs to the context's scheduler."""
    log.info("Registering scheduled jobs")
    jobs = build_jobs(ctx)
    for job in jobs:
        ctx.scheduler.add_job(job)

    ctx.security_log.log(
        "AUTOMATION_INITIALIZED",
        details={"jobs": [job.id for job in jobs], "timezone": ctx.scheduler.timezone},
    )
    log.info("All %d scheduled jobs registered", len(jobs))
    return jobs
