from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path

from common.db import get_connection


_CREATE_TABLE = """\
CREATE TABLE IF NOT EXISTS outbox (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    channel    TEXT    NOT NULL,
    recipient  TEXT    NOT NULL,
    subject    TEXT,
    body       TEXT    NOT NULL,
    html       TEXT,
    created_at REAL    NOT NULL,
    sent_at    REAL,
    status     TEXT    DEFAULT 'pending'
)
"""

_CREATE_INDEX = """\
CREATE INDEX IF NOT EXISTS idx_outbox_recipient ON outbox (recipient, created_at)
"""


@dataclass
class OutboxMessage:
    id: int
    channel: str  # "email" or "sms"
    recipient: str
    subject: str | None
    body: str
    html: str | None
    created_at: float
    sent_at: float | None
    status: str


def _ensure_table(conn) -> None:
    conn.execute(_CREATE_TABLE)
    conn.execute(_CREATE_INDEX)


def post_message(
    db_path: str | Path,
    channel: str,
    recipient: str,
    body: str,
    subject: str | None = None,
    html: str | None = None,
    status: str = "pending",
) -> int:
    """Insert a message into the outbox. Returns the new row id."""
    now = time.time()
    conn = get_connection(db_path)
    try:
        _ensure_table(conn)
        cursor = conn.execute(
            "INSERT INTO outbox (channel, recipient, subject, body, html, created_at, sent_at, status) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (channel, recipient, subject, body, html, now, now if status == "sent" else None, status),
        )
        conn.commit()
        return cursor.lastrowid
    finally:
        conn.close()


def list_messages(
    db_path: str | Path,
    channel: str | None = None,
    recipient: str | None = None,
    status: str | None = None,
    limit: int = 50,
) -> list[OutboxMessage]:
    """Most recent outbox messages first, optionally filtered."""
    clauses: list[str] = []
    params: list = []
    if channel:
        clauses.append("channel = ?")
        params.append(channel)
    if recipient:
        clauses.append("recipient = ?")
        params.append(recipient)
    if status:
        clauses.append("status = ?")
        params.append(status)

    where = " AND ".join(clauses) if clauses else "1=1"
    params.append(limit)

    conn = get_connection(db_path)
    try:
        _ensure_table(conn)
        rows = conn.execute(
            f"SELECT * FROM outbox WHERE {where} ORDER BY created_at DESC, id DESC LIMIT ?",
            params,
        ).fetchall()
    finally:
        conn.close()
    return [
        OutboxMessage(
            id=r["id"],
            channel=r["channel"],
            recipient=r["recipient"],
            subject=r["subject"],
            body=r["body"],
            html=r["html"],
            created_at=r["created_at"],
            sent_at=r["sent_at"],
            status=r["status"],
        )
        for r in rows
    ]
