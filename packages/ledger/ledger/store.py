"""Client, plan and client-history store backed by SQLite.

Database lives at ~/.nuvelon/clients.db and uses WAL mode with a
busy_timeout of 5 000 ms, like every other Nuvelon database.
"""

from __future__ import annotations

import json
import sqlite3
import time
from dataclasses import asdict
from pathlib import Path
from typing import Iterable

from common.db import get_connection
from ledger.models import (
    Address,
    Client,
    ClientStatus,
    HistoryAction,
    HistoryEntry,
    Plan,
)

_DEFAULT_DB = Path("~/.nuvelon/clients.db")

_CREATE_PLANS = """\
CREATE TABLE IF NOT EXISTS plans (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    duration_months INTEGER NOT NULL,
    price REAL NOT NULL,
    features_json TEXT DEFAULT '[]',
    is_active INTEGER DEFAULT 1,
    created_at REAL NOT NULL
)
"""

_CREATE_CLIENTS = """\
CREATE TABLE IF NOT EXISTS clients (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    plan_id TEXT NOT NULL REFERENCES plans (id),
    purchase_date REAL NOT NULL,
    renewal_date REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    email TEXT,
    phone TEXT,
    notes TEXT DEFAULT '',
    address_json TEXT DEFAULT '{}',
    payment_method TEXT,
    last_payment REAL,
    next_payment REAL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
)
"""

_CREATE_HISTORY = """\
CREATE TABLE IF NOT EXISTS client_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id TEXT NOT NULL REFERENCES clients (id),
    action TEXT NOT NULL,
    actor TEXT NOT NULL,
    old_values_json TEXT DEFAULT '{}',
    new_values_json TEXT DEFAULT '{}',
    created_at REAL NOT NULL
)
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_clients_status ON clients (status, renewal_date)",
    "CREATE INDEX IF NOT EXISTS idx_clients_plan ON clients (plan_id)",
    "CREATE INDEX IF NOT EXISTS idx_history_client ON client_history (client_id, created_at)",
]


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

def _row_to_plan(row: sqlite3.Row) -> Plan:
    return Plan(
        id=row["id"],
        name=row["name"],
        description=row["description"] or "",
        duration_months=row["duration_months"],
        price=row["price"],
        features=json.loads(row["features_json"] or "[]"),
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
    )


def _row_to_client(row: sqlite3.Row) -> Client:
    return Client(
        id=row["id"],
        name=row["name"],
        plan_id=row["plan_id"],
        purchase_date=row["purchase_date"],
        renewal_date=row["renewal_date"],
        status=ClientStatus(row["status"]),
        email=row["email"],
        phone=row["phone"],
        notes=row["notes"] or "",
        address=Address(**json.loads(row["address_json"] or "{}")),
        payment_method=row["payment_method"],
        last_payment=row["last_payment"],
        next_payment=row["next_payment"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_history(row: sqlite3.Row) -> HistoryEntry:
    return HistoryEntry(
        id=row["id"],
        client_id=row["client_id"],
        action=HistoryAction(row["action"]),
        actor=row["actor"],
        old_values=json.loads(row["old_values_json"] or "{}"),
        new_values=json.loads(row["new_values_json"] or "{}"),
        created_at=row["created_at"],
    )


def _status_clauses(
    status: ClientStatus | None,
    statuses: Iterable[ClientStatus] | None,
    renewal_before: float | None,
) -> tuple[str, list[object]]:
    clauses: list[str] = []
    params: list[object] = []

    if status is not None:
        clauses.append("status = ?")
        params.append(status.value)
    if statuses is not None:
        values = [s.value for s in statuses]
        clauses.append(f"status IN ({', '.join('?' for _ in values)})")
        params.extend(values)
    if renewal_before is not None:
        clauses.append("renewal_date <= ?")
        params.append(renewal_before)

    where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
    return where, params


# ---------------------------------------------------------------------------
# ClientStore
# ---------------------------------------------------------------------------

class ClientStore:
    """SQLite-backed store for plans, clients and their audit history."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        self._db_path = Path(db_path or _DEFAULT_DB).expanduser()
        self._ensure_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    # -- connection ---------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        return get_connection(self._db_path)

    def _ensure_schema(self) -> None:
        conn = self._connect()
        try:
            conn.execute(_CREATE_PLANS)
            conn.execute(_CREATE_CLIENTS)
            conn.execute(_CREATE_HISTORY)
            for idx in _CREATE_INDEXES:
                conn.execute(idx)
            conn.commit()
        finally:
            conn.close()

    # -- plans --------------------------------------------------------------

    def save_plan(self, plan: Plan) -> None:
        """Insert or replace a plan."""
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO plans "
                "(id, name, description, duration_months, price, features_json, "
                "is_active, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET name = excluded.name, "
                "description = excluded.description, "
                "duration_months = excluded.duration_months, price = excluded.price, "
                "features_json = excluded.features_json, is_active = excluded.is_active",
                (
                    plan.id,
                    plan.name,
                    plan.description,
                    plan.duration_months,
                    plan.price,
                    json.dumps(plan.features),
                    1 if plan.is_active else 0,
                    plan.created_at,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def get_plan(self, plan_id: str) -> Plan | None:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM plans WHERE id = ?", (plan_id,)).fetchone()
            return _row_to_plan(row) if row else None
        finally:
            conn.close()

    def list_plans(self, active_only: bool = False) -> list[Plan]:
        sql = "SELECT * FROM plans"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY duration_months, price"
        conn = self._connect()
        try:
            return [_row_to_plan(r) for r in conn.execute(sql).fetchall()]
        finally:
            conn.close()

    # -- clients ------------------------------------------------------------

    def save_client(self, client: Client) -> None:
        """Insert or update a client. Bumps ``updated_at``."""
        client.updated_at = time.time()
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO clients "
                "(id, name, plan_id, purchase_date, renewal_date, status, email, phone, "
                "notes, address_json, payment_method, last_payment, next_payment, "
                "created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET name = excluded.name, "
                "plan_id = excluded.plan_id, purchase_date = excluded.purchase_date, "
                "renewal_date = excluded.renewal_date, status = excluded.status, "
                "email = excluded.email, phone = excluded.phone, notes = excluded.notes, "
                "address_json = excluded.address_json, "
                "payment_method = excluded.payment_method, "
                "last_payment = excluded.last_payment, next_payment = excluded.next_payment, "
                "updated_at = excluded.updated_at",
                (
                    client.id,
                    client.name,
                    client.plan_id,
                    client.purchase_date,
                    client.renewal_date,
                    client.status.value,
                    client.email,
                    client.phone,
                    client.notes,
                    json.dumps(asdict(client.address)),
                    client.payment_method,
                    client.last_payment,
                    client.next_payment,
                    client.created_at,
                    client.updated_at,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def set_client_status(self, client: Client, new_status: ClientStatus) -> bool:
        """Change only the status column of *client*'s row.

        The write happens only while the row still has the status and
        renewal date read into *client*; returns False when another writer
        got there first.
        """
        conn = self._connect()
        try:
            cursor = conn.execute(
                "UPDATE clients SET status = ?, updated_at = ? "
                "WHERE id = ? AND status = ? AND renewal_date = ?",
                (
                    new_status.value,
                    time.time(),
                    client.id,
                    client.status.value,
                    client.renewal_date,
                ),
            )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    def get_client(self, client_id: str) -> Client | None:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM clients WHERE id = ?", (client_id,)).fetchone()
            return _row_to_client(row) if row else None
        finally:
            conn.close()

    def list_clients(
        self,
        status: ClientStatus | None = None,
        statuses: Iterable[ClientStatus] | None = None,
        renewal_before: float | None = None,
    ) -> list[Client]:
        """List clients, soonest renewal first, with optional filters."""
        where, params = _status_clauses(status, statuses, renewal_before)
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT * FROM clients{where} ORDER BY renewal_date, name", params
            ).fetchall()
            return [_row_to_client(r) for r in rows]
        finally:
            conn.close()

    def count_clients(
        self,
        status: ClientStatus | None = None,
        statuses: Iterable[ClientStatus] | None = None,
        renewal_before: float | None = None,
    ) -> int:
        where, params = _status_clauses(status, statuses, renewal_before)
        conn = self._connect()
        try:
            row = conn.execute(f"SELECT COUNT(*) AS cnt FROM clients{where}", params).fetchone()
            return row["cnt"]
        finally:
            conn.close()

    def sum_plan_price(self, status: ClientStatus) -> float:
        """Sum of the plan price over every client in *status*."""
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT COALESCE(SUM(p.price), 0) AS total FROM clients c "
                "JOIN plans p ON p.id = c.plan_id WHERE c.status = ?",
                (status.value,),
            ).fetchone()
            return float(row["total"])
        finally:
            conn.close()

    # -- history ------------------------------------------------------------

    def add_history(self, entry: HistoryEntry) -> HistoryEntry:
        conn = self._connect()
        try:
            cursor = conn.execute(
                "INSERT INTO client_history "
                "(client_id, action, actor, old_values_json, new_values_json, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    entry.client_id,
                    entry.action.value,
                    entry.actor,
                    json.dumps(entry.old_values, default=str),
                    json.dumps(entry.new_values, default=str),
                    entry.created_at,
                ),
            )
            conn.commit()
            entry.id = cursor.lastrowid
            return entry
        finally:
            conn.close()

    def list_history(self, client_id: str, limit: int = 100) -> list[HistoryEntry]:
        """Audit trail for a client, newest first."""
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM client_history WHERE client_id = ? "
                "ORDER BY created_at DESC, id DESC LIMIT ?",
                (client_id, limit),
            ).fetchall()
            return [_row_to_history(r) for r in rows]
        finally:
            conn.close()
