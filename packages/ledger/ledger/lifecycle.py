"""Client lifecycle engine.

Turns the time-based business rules into client status changes and renewal
reminders, and performs the explicit lifecycle actions (renew, cancel,
suspend, reactivate). Every mutation writes a client-history entry and a
security event. Store errors are not caught here; the caller decides
whether to retry or report.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

from common.errors import NotFoundError, ValidationError
from common.models import RenewalNotification
from common.security import SecurityLog
from ledger.dates import SECONDS_PER_DAY, add_months, days_until
from ledger.models import (
    Address,
    Client,
    ClientStatus,
    ClientStatusUpdate,
    HistoryAction,
    HistoryEntry,
    Plan,
)
from ledger.store import ClientStore

log = logging.getLogger(__name__)

RENEWAL_WINDOW_DAYS = 7
REMINDER_DAYS = (7, 3, 1)


class ClientLifecycle:
    def __init__(
        self,
        store: ClientStore,
        security_log: SecurityLog,
        timezone: str = "America/Sao_Paulo",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._security = security_log
        self._tz = timezone
        self._clock = clock
        # serializes read-modify-write of a client across API worker threads
        self._lock = threading.Lock()

    @property
    def store(self) -> ClientStore:
        return self._store

    # -- automated rules ----------------------------------------------------

    def update_client_statuses(self) -> list[ClientStatusUpdate]:
        """Move Active clients due within the renewal window to NeedsRenewal.

        Only the status column is written, and only if the client is still
        as it was read, so a renewal or cancellation made meanwhile wins.
        """
        now = self._clock()
        updates: list[ClientStatusUpdate] = []

        for client in self._store.list_clients(status=ClientStatus.ACTIVE):
            days = days_until(client.renewal_date, now)
            if days <= 0:
                new_status, reason = ClientStatus.NEEDS_RENEWAL, "plan expired"
            elif days <= RENEWAL_WINDOW_DAYS:
                new_status, reason = ClientStatus.NEEDS_RENEWAL, f"renews in {days} days"
            else:
                continue

            if new_status == client.status:
                continue

            with self._lock:
                if not self._store.set_client_status(client, new_status):
                    log.info("Client %s changed during status update, skipped", client.name)
                    continue
                self._store.add_history(HistoryEntry(
                    client_id=client.id,
                    action=HistoryAction.STATUS_CHANGED,
                    actor="system",
                    old_values={"status": client.status.value},
                    new_values={"status": new_status.value, "reason": reason, "automated": True},
                    created_at=self._clock(),
                ))
            updates.append(ClientStatusUpdate(
                client_id=client.id,
                old_status=client.status,
                new_status=new_status,
                reason=reason,
            ))

        log.info("Updated %d client status(es)", len(updates))
        return updates

    def generate_renewal_notifications(self) -> list[RenewalNotification]:
        """Reminders for clients due on the 7/3/1-day cadence or already overdue."""
        now = self._clock()
        window_end = now + RENEWAL_WINDOW_DAYS * SECONDS_PER_DAY
        clients = self._store.list_clients(
            statuses=(ClientStatus.ACTIVE, ClientStatus.NEEDS_RENEWAL),
            renewal_before=window_end,
        )

        plans: dict[str, Plan | None] = {}
        notifications: list[RenewalNotification] = []
        for client in clients:
            days = days_until(client.renewal_date, now)
            if days not in REMINDER_DAYS and days > 0:
                continue

            if client.plan_id not in plans:
                plans[client.plan_id] = self._store.get_plan(client.plan_id)
            plan = plans[client.plan_id]

            notifications.append(RenewalNotification(
                client_id=client.id,
                client_name=client.name,
                email=client.email,
                phone=client.phone,
                plan_name=plan.name if plan else "",
                renewal_date=client.renewal_date,
                days_until_renewal=days,
            ))

        log.info("Generated %d renewal notification(s)", len(notifications))
        return notifications

    # -- explicit actions ---------------------------------------------------

    def create_client(
        self,
        name: str,
        plan_id: str,
        actor_id: str,
        purchase_date: float | None = None,
        email: str | None = None,
        phone: str | None = None,
        notes: str = "",
        address: Address | None = None,
        payment_method: str | None = None,
    ) -> Client:
        if not name.strip():
            raise ValidationError("Client name is required")
        plan = self._require_plan(plan_id)

        purchased = purchase_date if purchase_date is not None else self._clock()
        client = Client(
            name=name.strip(),
            plan_id=plan.id,
            purchase_date=purchased,
            renewal_date=add_months(purchased, plan.duration_months, self._tz),
            email=email,
            phone=phone,
            notes=notes,
            address=address or Address(),
            payment_method=payment_method,
        )
        client.next_payment = client.renewal_date
        self._store.save_client(client)
        self._store.add_history(HistoryEntry(
            client_id=client.id,
            action=HistoryAction.CREATED,
            actor=actor_id,
            new_values={
                "name": client.name,
                "plan_id": plan.id,
                "status": client.status.value,
                "renewal_date": client.renewal_date,
            },
            created_at=self._clock(),
        ))
        self._security.log(
            "CLIENT_CREATED",
            user_id=actor_id,
            details={"client_id": client.id, "client_name": client.name, "plan_id": plan.id},
        )
        log.info("Client %s created on plan %s", client.name, plan.name)
        return client

    def renew_client(self, client_id: str, plan_id: str, actor_id: str) -> Client:
        """Start a new billing period on *plan_id* from now."""
        with self._lock:
            client = self._require_client(client_id)
            plan = self._require_plan(plan_id)
            now = self._clock()
            old_plan = client.plan_id
            old_status = client.status
            old_renewal = client.renewal_date
            new_renewal = add_months(now, plan.duration_months, self._tz)

            client.plan_id = plan.id
            client.status = ClientStatus.ACTIVE
            client.purchase_date = now
            client.renewal_date = new_renewal
            client.last_payment = now
            client.next_payment = new_renewal
            self._store.save_client(client)

            self._store.add_history(HistoryEntry(
                client_id=client.id,
                action=HistoryAction.RENEWED,
                actor=actor_id,
                old_values={
                    "plan_id": old_plan,
                    "status": old_status.value,
                    "renewal_date": old_renewal,
                },
                new_values={
                    "plan_id": plan.id,
                    "status": ClientStatus.ACTIVE.value,
                    "renewal_date": new_renewal,
                },
                created_at=now,
            ))
        self._security.log(
            "CLIENT_RENEWED",
            user_id=actor_id,
            details={
                "client_id": client.id,
                "client_name": client.name,
                "old_plan": old_plan,
                "new_plan": plan.id,
                "old_renewal_date": old_renewal,
                "new_renewal_date": new_renewal,
            },
        )
        log.info("Client %s renewed on plan %s", client.name, plan.name)
        return client

    def cancel_client(self, client_id: str, reason: str, actor_id: str) -> Client:
        return self._set_status(
            client_id, ClientStatus.CANCELLED, HistoryAction.CANCELLED,
            "CLIENT_CANCELLED", actor_id, reason,
        )

    def suspend_client(self, client_id: str, reason: str, actor_id: str) -> Client:
        return self._set_status(
            client_id, ClientStatus.SUSPENDED, HistoryAction.SUSPENDED,
            "CLIENT_SUSPENDED", actor_id, reason,
        )

    def reactivate_client(self, client_id: str, actor_id: str) -> Client:
        return self._set_status(
            client_id, ClientStatus.ACTIVE, HistoryAction.REACTIVATED,
            "CLIENT_REACTIVATED", actor_id,
        )

    # -- reporting ----------------------------------------------------------

    def get_client_statistics(self) -> dict[str, Any]:
        """Headline counts for the dashboard and the weekly report.

        ``monthly_revenue`` sums each Active client's full plan price, so a
        yearly plan contributes its whole annual price.
        """
        now = self._clock()
        open_statuses = (ClientStatus.ACTIVE, ClientStatus.NEEDS_RENEWAL)
        store = self._store
        return {
            "total_clients": store.count_clients(),
            "active_clients": store.count_clients(status=ClientStatus.ACTIVE),
            "needs_renewal": store.count_clients(status=ClientStatus.NEEDS_RENEWAL),
            "cancelled_clients": store.count_clients(status=ClientStatus.CANCELLED),
            "suspended_clients": store.count_clients(status=ClientStatus.SUSPENDED),
            "expiring_soon": store.count_clients(
                statuses=open_statuses,
                renewal_before=now + RENEWAL_WINDOW_DAYS * SECONDS_PER_DAY,
            ),
            "monthly_revenue": round(store.sum_plan_price(ClientStatus.ACTIVE), 2),
        }

    def client_history(self, client_id: str, limit: int = 100) -> list[HistoryEntry]:
        self._require_client(client_id)
        return self._store.list_history(client_id, limit=limit)

    # -- helpers ------------------------------------------------------------

    def _require_client(self, client_id: str) -> Client:
        client = self._store.get_client(client_id)
        if client is None:
            raise NotFoundError(f"Client {client_id} not found")
        return client

    def _require_plan(self, plan_id: str) -> Plan:
        plan = self._store.get_plan(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan {plan_id} not found")
        return plan

    def _set_status(
        self,
        client_id: str,
        new_status: ClientStatus,
        action: HistoryAction,
        event: str,
        actor_id: str,
        reason: str | None = None,
    ) -> Client:
        new_values: dict[str, Any] = {"status": new_status.value}
        if reason is not None:
            new_values["reason"] = reason

        # No reachability check: cancelling a cancelled client is accepted.
        with self._lock:
            client = self._require_client(client_id)
            old_status = client.status
            client.status = new_status
            self._store.save_client(client)
            self._store.add_history(HistoryEntry(
                client_id=client.id,
                action=action,
                actor=actor_id,
                old_values={"status": old_status.value},
                new_values=new_values,
                created_at=self._clock(),
            ))

        details: dict[str, Any] = {"client_id": client.id, "client_name": client.name}
        if reason is not None:
            details["reason"] = reason
        self._security.log(event, user_id=actor_id, details=details)
        log.info("Client %s: %s -> %s", client.name, old_status.value, new_status.value)
        return client
