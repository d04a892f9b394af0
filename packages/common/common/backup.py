"""Nuvelon backup: export the SQLite databases as .nba archives.

An .nba (Nuvelon Backup Archive) is a gzipped tarball containing the
client, outbox and (optionally) Watchtower databases, the dashboard config
overrides, and a manifest.json with metadata.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import sqlite3
import tarfile
import tempfile
from datetime import datetime, timezone
from pathlib import Path

log = logging.getLogger(__name__)

_VERSION = "1.0.0"

_DATABASES = ("clients.db", "outbox.db")


def export_backup(
    data_dir: str | Path,
    backup_dir: str | Path | None = None,
    include_logs: bool = False,
) -> dict:
    """Create a .nba backup archive of the console data.

    Returns dict with archive_path, size_bytes, checksum and manifest.
    """
    data_dir = Path(data_dir).expanduser()
    if backup_dir is None:
        backup_dir = data_dir / "backups"
    backup_dir = Path(backup_dir).expanduser()
    backup_dir.mkdir(parents=True, exist_ok=True)

    now = datetime.now(timezone.utc)
    archive_path = backup_dir / f"nuvelon-backup-{now.strftime('%Y%m%d-%H%M%S-%f')}.nba"

    manifest = {
        "version": _VERSION,
        "exported_at": now.isoformat(),
        "exported_by": os.environ.get("USER", "unknown"),
        "contents": {},
    }

    with tempfile.TemporaryDirectory() as tmp:
        staging = Path(tmp) / "staging"
        db_dir = staging / "databases"
        db_dir.mkdir(parents=True)

        names = list(_DATABASES)
        if include_logs:
            names.append("watchtower.db")

        copied: list[str] = []
        for name in names:
            src = data_dir / name
            if src.exists():
                _safe_copy_db(src, db_dir / name)
                copied.append(name)
        manifest["contents"]["databases"] = copied

        config_file = data_dir / "config_overrides.json"
        if config_file.exists():
            (staging / "config").mkdir()
            shutil.copy2(config_file, staging / "config" / "config_overrides.json")
        manifest["contents"]["config"] = config_file.exists()

        (staging / "manifest.json").write_text(
            json.dumps(manifest, indent=2), encoding="utf-8"
        )

        with tarfile.open(archive_path, "w:gz") as tar:
            for child in staging.iterdir():
                tar.add(child, arcname=child.name)

    size = archive_path.stat().st_size
    checksum = _sha256(archive_path)

    log.info("Backup created: %s (%d bytes, sha256=%s)", archive_path, size, checksum[:12])

    return {
        "archive_path": str(archive_path),
        "size_bytes": size,
        "checksum": f"sha256:{checksum}",
        "manifest": manifest,
    }


def list_backups(backup_dir: str | Path) -> list[dict]:
    """List available .nba archives, newest first."""
    backup_dir = Path(backup_dir).expanduser()
    if not backup_dir.exists():
        return []

    backups = []
    for f in sorted(backup_dir.glob("*.nba"), reverse=True):
        entry = {
            "filename": f.name,
            "path": str(f),
            "size_bytes": f.stat().st_size,
            "created_at": f.stat().st_mtime,
        }
        try:
            with tarfile.open(f, "r:gz") as tar:
                fobj = tar.extractfile(tar.getmember("manifest.json"))
                entry["manifest"] = json.loads(fobj.read().decode("utf-8")) if fobj else None
        except (tarfile.TarError, KeyError, json.JSONDecodeError, OSError):
            entry["manifest"] = None
        backups.append(entry)

    return backups


def prune_backups(backup_dir: str | Path, keep: int) -> list[str]:
    """Delete all but the newest *keep* archives. Returns removed filenames."""
    backup_dir = Path(backup_dir).expanduser()
    if not backup_dir.exists():
        return []
    archives = sorted(backup_dir.glob("*.nba"), reverse=True)
    removed = []
    for old in archives[max(keep, 0):]:
        old.unlink()
        removed.append(old.name)
    if removed:
        log.info("Pruned %d old backup(s)", len(removed))
    return removed


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _safe_copy_db(src: Path, dest: Path) -> None:
    """Copy SQLite database using the backup API for consistency."""
    src_conn = sqlite3.connect(str(src))
    dest_conn = sqlite3.connect(str(dest))
    try:
        src_conn.backup(dest_conn)
    finally:
        dest_conn.close()
        src_conn.close()


def _sha256(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()
