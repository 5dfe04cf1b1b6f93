"""Repository for singleton system flags."""

import json
import sqlite3

from tradeguard.models.common import utc_now_iso
from tradeguard.models.system import FlagType, SystemFlag


def get_flag(conn: sqlite3.Connection, flag_type: FlagType) -> SystemFlag | None:
    row = conn.execute(
        "SELECT * FROM system_flags WHERE flag_type = ?", (flag_type.value,)
    ).fetchone()
    if row is None:
        return None
    return SystemFlag(
        flag_type=FlagType(row["flag_type"]),
        enabled=bool(row["enabled"]),
        reason=row["reason"],
        triggered_by=row["triggered_by"],
        triggered_at=row["triggered_at"],
        metadata=json.loads(row["metadata"] or "{}"),
        updated_at=row["updated_at"],
    )


def save_flag(conn: sqlite3.Connection, flag: SystemFlag) -> SystemFlag:
    """Insert or replace the singleton row for ``flag.flag_type``."""
    updated_at = utc_now_iso()
    conn.execute(
        "INSERT INTO system_flags "
        "(flag_type, enabled, reason, triggered_by, triggered_at, metadata, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?) "
        "ON CONFLICT(flag_type) DO UPDATE SET enabled = excluded.enabled, "
        "reason = excluded.reason, triggered_by = excluded.triggered_by, "
        "triggered_at = excluded.triggered_at, metadata = excluded.metadata, "
        "updated_at = excluded.updated_at",
        (
            flag.flag_type.value,
            int(flag.enabled),
            flag.reason,
            flag.triggered_by,
            flag.triggered_at,
            json.dumps(flag.metadata, default=str),
            updated_at,
        ),
    )
    conn.commit()
    return get_flag(conn, flag.flag_type) or flag
