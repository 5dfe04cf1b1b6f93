"""SQLite access: one connection per process, schema from numbered migrations."""

import importlib
import logging
import sqlite3
from pathlib import Path

from tradeguard.models.common import utc_now_iso

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"
MIGRATIONS_PACKAGE = "tradeguard.storage.migrations"
BUSY_TIMEOUT_SECONDS = 5.0


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open the gateway database, creating its directory if needed.

    WAL mode so the CLI can read while the worker daemon writes.
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=BUSY_TIMEOUT_SECONDS)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def applied_versions(conn: sqlite3.Connection) -> set[str]:
    return {row["version"] for row in conn.execute("SELECT version FROM schema_versions")}


def run_migrations(conn: sqlite3.Connection) -> list[str]:
    """Apply every pending ``v###_*`` module in version order. Returns those applied."""
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_versions ("
        "  version TEXT PRIMARY KEY,"
        "  applied_at TEXT NOT NULL"
        ")"
    )
    conn.commit()

    done = applied_versions(conn)
    pending = [v for v in _discover_migrations() if v not in done]
    for version in pending:
        module = importlib.import_module(f"{MIGRATIONS_PACKAGE}.{version}")
        module.up(conn)
        conn.execute(
            "INSERT INTO schema_versions (version, applied_at) VALUES (?, ?)",
            (version, utc_now_iso()),
        )
        conn.commit()
        logger.info("Applied migration %s", version)
    return pending


def _discover_migrations() -> list[str]:
    return sorted(p.stem for p in MIGRATIONS_DIR.glob("v[0-9][0-9][0-9]_*.py"))
