"""Repository for trade intents."""

import json
import sqlite3
from dataclasses import replace

from tradeguard.errors import NotFoundError
from tradeguard.models.common import utc_now_iso
from tradeguard.models.trading import (
    Exchange,
    IntentStatus,
    OrderType,
    ProductType,
    TradeIntent,
    TransactionType,
    Validity,
)


def create_intent(conn: sqlite3.Connection, intent: TradeIntent) -> TradeIntent:
    """Persist a new intent. Stamps created_at/updated_at."""
    now = utc_now_iso()
    intent = replace(intent, created_at=intent.created_at or now, updated_at=now)
    conn.execute(
        "INSERT INTO trade_intents "
        "(id, user_id, symbol, exchange, transaction_type, order_type, product_type, "
        "quantity, price, trigger_price, validity, status, risk_check_result, "
        "rejection_reason, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            intent.id,
            intent.user_id,
            intent.symbol,
            intent.exchange.value,
            intent.transaction_type.value,
            intent.order_type.value,
            intent.product_type.value,
            intent.quantity,
            intent.price,
            intent.trigger_price,
            intent.validity.value,
            intent.status.value,
            _dump(intent.risk_check_result),
            intent.rejection_reason,
            intent.created_at,
            intent.updated_at,
        ),
    )
    conn.commit()
    return intent


def get_intent(conn: sqlite3.Connection, intent_id: str) -> TradeIntent | None:
    row = conn.execute(
        "SELECT * FROM trade_intents WHERE id = ?", (intent_id,)
    ).fetchone()
    if row is None:
        return None
    return _from_row(row)


def require_intent(conn: sqlite3.Connection, intent_id: str) -> TradeIntent:
    intent = get_intent(conn, intent_id)
    if intent is None:
        raise NotFoundError(f"Trade intent not found: {intent_id}")
    return intent


def transition_intent(
    conn: sqlite3.Connection,
    intent: TradeIntent,
    status: IntentStatus,
    *,
    risk_check_result: dict | None = None,
    rejection_reason: str | None = None,
) -> TradeIntent:
    """Move an intent forward and persist it.

    The UPDATE is conditional on the stored status so a concurrent worker that
    already moved the intent cannot be overwritten.
    """
    changes: dict = {"updated_at": utc_now_iso()}
    if risk_check_result is not None:
        changes["risk_check_result"] = risk_check_result
    if rejection_reason is not None:
        changes["rejection_reason"] = rejection_reason
    updated = intent.transition(status, **changes)

    cursor = conn.execute(
        "UPDATE trade_intents SET status = ?, risk_check_result = ?, "
        "rejection_reason = ?, updated_at = ? WHERE id = ? AND status = ?",
        (
            updated.status.value,
            _dump(updated.risk_check_result),
            updated.rejection_reason,
            updated.updated_at,
            updated.id,
            intent.status.value,
        ),
    )
    conn.commit()
    if cursor.rowcount == 0:
        current = require_intent(conn, intent.id)
        # Re-validate against what is actually stored; raises on a stale move.
        current.transition(status)
        return transition_intent(
            conn,
            current,
            status,
            risk_check_result=risk_check_result,
            rejection_reason=rejection_reason,
        )
    return updated


def list_intents(
    conn: sqlite3.Connection,
    user_id: str,
    status: IntentStatus | None = None,
    limit: int = 100,
) -> list[TradeIntent]:
    sql = "SELECT * FROM trade_intents WHERE user_id = ?"
    params: list = [user_id]
    if status is not None:
        sql += " AND status = ?"
        params.append(status.value)
    sql += " ORDER BY created_at DESC LIMIT ?"
    params.append(limit)
    return [_from_row(r) for r in conn.execute(sql, params).fetchall()]


def _dump(value: dict | None) -> str | None:
    return json.dumps(value, default=str) if value is not None else None


def _from_row(row: sqlite3.Row) -> TradeIntent:
    return TradeIntent(
        id=row["id"],
        user_id=row["user_id"],
        symbol=row["symbol"],
        exchange=Exchange(row["exchange"]),
        transaction_type=TransactionType(row["transaction_type"]),
        order_type=OrderType(row["order_type"]),
        product_type=ProductType(row["product_type"]),
        quantity=row["quantity"],
        price=row["price"],
        trigger_price=row["trigger_price"],
        validity=Validity(row["validity"]),
        status=IntentStatus(row["status"]),
        risk_check_result=json.loads(row["risk_check_result"])
        if row["risk_check_result"]
        else None,
        rejection_reason=row["rejection_reason"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
