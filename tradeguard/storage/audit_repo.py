"""Repository for the append-only audit log."""

import json
import sqlite3


def insert_entry(conn: sqlite3.Connection, entry: dict) -> int:
    """Persist one audit entry. Returns the row id."""
    cursor = conn.execute(
        "INSERT INTO audit_log "
        "(event, user_id, source, payload, payload_hash, result, metadata, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        (
            entry["event"],
            entry.get("user_id"),
            entry.get("source", "SYSTEM"),
            json.dumps(entry.get("payload") or {}, default=str, sort_keys=True),
            entry["payload_hash"],
            entry.get("result", "SUCCESS"),
            json.dumps(entry.get("metadata") or {}, default=str),
            entry["timestamp"],
        ),
    )
    conn.commit()
    assert cursor.lastrowid is not None
    return cursor.lastrowid


def list_entries(
    conn: sqlite3.Connection,
    user_id: str | None = None,
    event: str | None = None,
    start: str | None = None,
    end: str | None = None,
    limit: int = 100,
) -> list[dict]:
    sql = "SELECT * FROM audit_log WHERE 1 = 1"
    params: list = []
    if user_id is not None:
        sql += " AND user_id = ?"
        params.append(user_id)
    if event is not None:
        sql += " AND event = ?"
        params.append(event)
    if start is not None:
        sql += " AND created_at >= ?"
        params.append(start)
    if end is not None:
        sql += " AND created_at <= ?"
        params.append(end)
    sql += " ORDER BY id DESC LIMIT ?"
    params.append(limit)
    out = []
    for row in conn.execute(sql, params).fetchall():
        d = dict(row)
        d["payload"] = json.loads(d["payload"])
        d["metadata"] = json.loads(d["metadata"])
        out.append(d)
    return out


def count_entries(
    conn: sqlite3.Connection,
    user_id: str,
    event: str,
    start: str | None = None,
) -> int:
    sql = "SELECT COUNT(*) FROM audit_log WHERE user_id = ? AND event = ?"
    params: list = [user_id, event]
    if start is not None:
        sql += " AND created_at >= ?"
        params.append(start)
    return conn.execute(sql, params).fetchone()[0]
