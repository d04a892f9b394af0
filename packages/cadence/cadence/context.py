"""Wiring for the services shared by the console API and the scheduler."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cadence.scheduler import JobScheduler
from common.config import Settings
from common.notifications import NotificationDispatcher, OutboxTransport
from common.security import SecurityLog
from common.watchtower import Watchtower
from ledger.lifecycle import ClientLifecycle
from ledger.store import ClientStore

log = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    settings: Settings
    store: ClientStore
    lifecycle: ClientLifecycle
    dispatcher: NotificationDispatcher
    security_log: SecurityLog
    watchtower: Watchtower
    scheduler: JobScheduler


def build_context(
    settings: Settings,
    watchtower: Watchtower | None = None,
    transport=None,
) -> ServiceContext:
    """Construct every service from *settings*.

    *transport* defaults to the SQLite outbox; tests pass a fake one.
    """
    security_log = SecurityLog(max_events=settings.security_log_size)
    store = ClientStore(settings.clients_db)
    dispatcher = NotificationDispatcher(
        transport=transport or OutboxTransport(settings.outbox_db),
        security_log=security_log,
        admin_emails=settings.admin_emails,
        brand=settings.brand,
        timezone=settings.timezone,
        max_history=settings.notification_history_size,
    )
    ctx = ServiceContext(
        settings=settings,
        store=store,
        lifecycle=ClientLifecycle(store, security_log, timezone=settings.timezone),
        dispatcher=dispatcher,
        security_log=security_log,
        watchtower=watchtower or Watchtower(settings.watchtower_db),
        scheduler=JobScheduler(
            security_log,
            timezone=settings.timezone,
            poll_interval=settings.scheduler_poll_seconds,
        ),
    )
    log.info("Services ready (data dir %s, timezone %s)", settings.data_path, settings.timezone)
    return ctx
