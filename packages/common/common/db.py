from __future__ import annotations

import sqlite3
from pathlib import Path


def get_connection(db_path: str | Path, shared: bool = False) -> sqlite3.Connection:
    """Open (or create) a SQLite database with WAL mode.

    ``shared`` connections may be used from several threads; the caller is
    responsible for serializing access to them.
    """
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=not shared)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn
