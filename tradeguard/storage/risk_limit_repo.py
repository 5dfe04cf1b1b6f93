"""Repository for per-user risk limits."""

import sqlite3
from dataclasses import replace

from tradeguard.errors import LimitConflictError, NotFoundError
from tradeguard.models.common import utc_now_iso
from tradeguard.models.risk import LimitStatus, LimitType, LimitUnit, RiskLimit


def create_limit(conn: sqlite3.Connection, limit: RiskLimit) -> RiskLimit:
    """Persist a limit. At most one ACTIVE limit per (user, type)."""
    if limit.status == LimitStatus.ACTIVE and get_active_limit(
        conn, limit.user_id, limit.limit_type
    ):
        raise LimitConflictError(
            f"Active {limit.limit_type} limit already exists. "
            "Update the existing limit or deactivate it first."
        )
    now = utc_now_iso()
    limit = replace(limit, created_at=now, updated_at=now)
    try:
        conn.execute(
            "INSERT INTO risk_limits "
            "(id, user_id, limit_type, value, unit, status, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                limit.id,
                limit.user_id,
                limit.limit_type.value,
                limit.value,
                limit.unit.value,
                limit.status.value,
                limit.created_at,
                limit.updated_at,
            ),
        )
    except sqlite3.IntegrityError as e:
        conn.rollback()
        raise LimitConflictError(f"Active {limit.limit_type} limit already exists") from e
    conn.commit()
    return limit


def get_active_limit(
    conn: sqlite3.Connection, user_id: str, limit_type: LimitType
) -> RiskLimit | None:
    row = conn.execute(
        "SELECT * FROM risk_limits WHERE user_id = ? AND limit_type = ? AND status = 'ACTIVE'",
        (user_id, limit_type.value),
    ).fetchone()
    if row is None:
        return None
    return _from_row(row)


def get_limit(conn: sqlite3.Connection, limit_id: str, user_id: str) -> RiskLimit:
    row = conn.execute(
        "SELECT * FROM risk_limits WHERE id = ? AND user_id = ?", (limit_id, user_id)
    ).fetchone()
    if row is None:
        raise NotFoundError(f"Risk limit not found: {limit_id}")
    return _from_row(row)


def list_limits(
    conn: sqlite3.Connection,
    user_id: str,
    limit_type: LimitType | None = None,
    status: LimitStatus | None = None,
) -> list[RiskLimit]:
    sql = "SELECT * FROM risk_limits WHERE user_id = ?"
    params: list = [user_id]
    if limit_type is not None:
        sql += " AND limit_type = ?"
        params.append(limit_type.value)
    if status is not None:
        sql += " AND status = ?"
        params.append(status.value)
    sql += " ORDER BY created_at DESC"
    return [_from_row(r) for r in conn.execute(sql, params).fetchall()]


def update_limit(conn: sqlite3.Connection, limit: RiskLimit) -> RiskLimit:
    limit = replace(limit, updated_at=utc_now_iso())
    try:
        conn.execute(
            "UPDATE risk_limits SET value = ?, unit = ?, status = ?, updated_at = ? "
            "WHERE id = ?",
            (limit.value, limit.unit.value, limit.status.value, limit.updated_at, limit.id),
        )
    except sqlite3.IntegrityError as e:
        conn.rollback()
        raise LimitConflictError(f"Active {limit.limit_type} limit already exists") from e
    conn.commit()
    return limit


def delete_limit(conn: sqlite3.Connection, limit_id: str) -> None:
    conn.execute("DELETE FROM risk_limits WHERE id = ?", (limit_id,))
    conn.commit()


def _from_row(row: sqlite3.Row) -> RiskLimit:
    return RiskLimit(
        id=row["id"],
        user_id=row["user_id"],
        limit_type=LimitType(row["limit_type"]),
        value=row["value"],
        unit=LimitUnit(row["unit"]),
        status=LimitStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
