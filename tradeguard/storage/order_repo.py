"""Repository for orders (one row per broker submission attempt)."""

import json
import sqlite3
from dataclasses import replace

from tradeguard.errors import NotFoundError
from tradeguard.models.common import utc_now_iso
from tradeguard.models.trading import (
    OPEN_ORDER_STATUSES,
    Order,
    OrderStatus,
    OrderType,
    ProductType,
    TransactionType,
)

_COLUMNS = (
    "id, trade_intent_id, user_id, broker_order_id, symbol, exchange, "
    "transaction_type, order_type, product_type, quantity, price, trigger_price, "
    "average_price, filled_quantity, status, status_message, placed_at, "
    "broker_response, created_at, updated_at"
)


def create_order(conn: sqlite3.Connection, order: Order) -> Order:
    now = utc_now_iso()
    order = replace(order, created_at=order.created_at or now, updated_at=now)
    conn.execute(
        f"INSERT INTO orders ({_COLUMNS}) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        _params(order),
    )
    conn.commit()
    return order


def save_order(conn: sqlite3.Connection, order: Order) -> Order:
    """Write back an order produced by ``Order.update``.

    Refuses to overwrite a row that has already reached a terminal status.
    """
    order = replace(order, updated_at=utc_now_iso())
    cursor = conn.execute(
        "UPDATE orders SET broker_order_id = ?, average_price = ?, "
        "filled_quantity = ?, status = ?, status_message = ?, placed_at = ?, "
        "broker_response = ?, updated_at = ? "
        "WHERE id = ? AND status NOT IN ('COMPLETE', 'CANCELLED', 'REJECTED', 'FAILED')",
        (
            order.broker_order_id,
            order.average_price,
            order.filled_quantity,
            order.status.value,
            order.status_message,
            order.placed_at,
            _dump(order.broker_response),
            order.updated_at,
            order.id,
        ),
    )
    conn.commit()
    if cursor.rowcount == 0:
        current = require_order(conn, order.id)
        # Raises InvariantViolation: the stored row is terminal.
        current.update()
    return order


def get_order(conn: sqlite3.Connection, order_id: str) -> Order | None:
    row = conn.execute(
        f"SELECT {_COLUMNS} FROM orders WHERE id = ?", (order_id,)
    ).fetchone()
    if row is None:
        return None
    return _from_row(row)


def require_order(conn: sqlite3.Connection, order_id: str) -> Order:
    order = get_order(conn, order_id)
    if order is None:
        raise NotFoundError(f"Order not found: {order_id}")
    return order


def get_user_order(conn: sqlite3.Connection, order_id: str, user_id: str) -> Order:
    row = conn.execute(
        f"SELECT {_COLUMNS} FROM orders WHERE id = ? AND user_id = ?",
        (order_id, user_id),
    ).fetchone()
    if row is None:
        raise NotFoundError(f"Order not found: {order_id}")
    return _from_row(row)


def list_orders(
    conn: sqlite3.Connection,
    user_id: str,
    status: OrderStatus | None = None,
    symbol: str | None = None,
    limit: int = 100,
) -> list[Order]:
    sql = f"SELECT {_COLUMNS} FROM orders WHERE user_id = ?"
    params: list = [user_id]
    if status is not None:
        sql += " AND status = ?"
        params.append(status.value)
    if symbol is not None:
        sql += " AND symbol = ?"
        params.append(symbol)
    sql += " ORDER BY created_at DESC LIMIT ?"
    params.append(limit)
    return [_from_row(r) for r in conn.execute(sql, params).fetchall()]


def get_completed_since(
    conn: sqlite3.Connection, user_id: str, since_iso: str
) -> list[Order]:
    """COMPLETE orders for a user last touched at or after ``since_iso``."""
    rows = conn.execute(
        f"SELECT {_COLUMNS} FROM orders "
        "WHERE user_id = ? AND status = 'COMPLETE' AND updated_at >= ?",
        (user_id, since_iso),
    ).fetchall()
    return [_from_row(r) for r in rows]


def get_open_orders_with_broker_id(conn: sqlite3.Connection) -> list[Order]:
    """All locally-tracked live orders that the broker knows about."""
    placeholders = ", ".join("?" for _ in OPEN_ORDER_STATUSES)
    rows = conn.execute(
        f"SELECT {_COLUMNS} FROM orders "
        f"WHERE status IN ({placeholders}) AND broker_order_id IS NOT NULL "
        "ORDER BY user_id, created_at",
        tuple(s.value for s in OPEN_ORDER_STATUSES),
    ).fetchall()
    return [_from_row(r) for r in rows]


def _dump(value: dict | None) -> str | None:
    return json.dumps(value, default=str) if value is not None else None


def _params(order: Order) -> tuple:
    return (
        order.id,
        order.trade_intent_id,
        order.user_id,
        order.broker_order_id,
        order.symbol,
        order.exchange,
        order.transaction_type.value,
        order.order_type.value,
        order.product_type.value,
        order.quantity,
        order.price,
        order.trigger_price,
        order.average_price,
        order.filled_quantity,
        order.status.value,
        order.status_message,
        order.placed_at,
        _dump(order.broker_response),
        order.created_at,
        order.updated_at,
    )


def _from_row(row: sqlite3.Row) -> Order:
    return Order(
        id=row["id"],
        trade_intent_id=row["trade_intent_id"],
        user_id=row["user_id"],
        broker_order_id=row["broker_order_id"],
        symbol=row["symbol"],
        exchange=row["exchange"],
        transaction_type=TransactionType(row["transaction_type"]),
        order_type=OrderType(row["order_type"]),
        product_type=ProductType(row["product_type"]),
        quantity=row["quantity"],
        price=row["price"],
        trigger_price=row["trigger_price"],
        average_price=row["average_price"],
        filled_quantity=row["filled_quantity"],
        status=OrderStatus(row["status"]),
        status_message=row["status_message"],
        placed_at=row["placed_at"],
        broker_response=json.loads(row["broker_response"])
        if row["broker_response"]
        else None,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
