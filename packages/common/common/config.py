"""Nuvelon configuration: loaded from environment / .env file."""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Fields that can be changed at runtime via the dashboard.
EDITABLE_FIELDS: dict[str, type] = {
    "admin_emails": list,
    "log_retention_days": int,
    "max_backups": int,
    "allowed_origins": list,
}

MAX_CONFIG_BACKUPS = 10


@dataclass
class Settings:
    data_dir: str = "~/.nuvelon"
    timezone: str = "America/Sao_Paulo"
    admin_emails: list[str] = field(default_factory=lambda: ["admin@nuvelon.com"])
    allowed_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    notification_history_size: int = 1000
    security_log_size: int = 1000
    log_retention_days: int = 90
    max_backups: int = 8
    scheduler_poll_seconds: float = 30.0
    run_scheduler: bool = True
    port: int = 8710
    brand: str = "Nuvelon"

    # -- derived paths ---------------------------------------------------------

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def clients_db(self) -> Path:
        return self.data_path / "clients.db"

    @property
    def outbox_db(self) -> Path:
        return self.data_path / "outbox.db"

    @property
    def watchtower_db(self) -> Path:
        return self.data_path / "watchtower.db"

    @property
    def backup_dir(self) -> Path:
        return self.data_path / "backups"

    @property
    def overrides_path(self) -> Path:
        return self.data_path / "config_overrides.json"


def _split_csv(raw: str) -> list[str]:
    return [v.strip() for v in raw.split(",") if v.strip()]


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() not in ("0", "false", "no", "off")


def _load_overrides(path: Path) -> dict:
    if path.is_file():
        try:
            return json.loads(path.read_text())
        except (json.JSONDecodeError, OSError):
            pass
    return {}


def _rotate_backups(p: Path) -> None:
    """Keep up to MAX_CONFIG_BACKUPS rolling copies of the overrides file."""
    backup_dir = p.parent / "config_backups"
    backup_dir.mkdir(parents=True, exist_ok=True)

    if p.is_file():
        ts = time.strftime("%Y%m%d_%H%M%S")
        dest = backup_dir / f"config_overrides.{ts}.json"
        dest.write_text(p.read_text())

        backups = sorted(backup_dir.glob("config_overrides.*.json"))
        while len(backups) > MAX_CONFIG_BACKUPS:
            backups.pop(0).unlink()


def save_config_overrides(settings: Settings, updates: dict) -> dict:
    """Merge *updates* into the overrides file and apply them to *settings*.

    Unknown keys are ignored. Comma-separated strings are accepted for list
    fields so the dashboard can post plain text inputs.
    """
    p = settings.overrides_path
    existing = _load_overrides(p)

    _rotate_backups(p)

    for key, value in updates.items():
        if key not in EDITABLE_FIELDS:
            continue
        expected = EDITABLE_FIELDS[key]
        if expected is list and isinstance(value, str):
            value = _split_csv(value)
        elif expected is int:
            value = int(value)
        existing[key] = value

    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(existing, indent=2))

    for key, value in existing.items():
        if hasattr(settings, key):
            setattr(settings, key, value)

    return existing


def editable_view(settings: Settings) -> dict:
    return {key: getattr(settings, key) for key in EDITABLE_FIELDS}


def load_settings() -> Settings:
    """Build a Settings instance from environment variables / .env."""
    load_dotenv()

    admin_raw = os.environ.get("ADMIN_EMAILS", "")
    origins_raw = os.environ.get(
        "ALLOWED_ORIGINS",
        "http://localhost:3000,http://localhost:3001",
    )

    s = Settings(
        data_dir=os.environ.get("NUVELON_DATA_DIR", "~/.nuvelon"),
        timezone=os.environ.get("NUVELON_TIMEZONE", "America/Sao_Paulo"),
        admin_emails=_split_csv(admin_raw) if admin_raw else ["admin@nuvelon.com"],
        allowed_origins=_split_csv(origins_raw),
        notification_history_size=int(os.environ.get("NOTIFICATION_HISTORY_SIZE", "1000")),
        security_log_size=int(os.environ.get("SECURITY_LOG_SIZE", "1000")),
        log_retention_days=int(os.environ.get("LOG_RETENTION_DAYS", "90")),
        max_backups=int(os.environ.get("MAX_BACKUPS", "8")),
        scheduler_poll_seconds=float(os.environ.get("SCHEDULER_POLL_SECONDS", "30")),
        run_scheduler=_parse_bool(os.environ.get("NUVELON_RUN_SCHEDULER", "true")),
        port=int(os.environ.get("CONSOLE_PORT", "8710")),
    )

    # Apply any saved overrides from the dashboard
    for key, value in _load_overrides(s.overrides_path).items():
        if hasattr(s, key) and key in EDITABLE_FIELDS:
            setattr(s, key, value)

    return s
