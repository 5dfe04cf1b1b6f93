"""Broker order status -> local OrderStatus."""

from tradeguard.models.trading import OrderStatus

BROKER_STATUS_MAP: dict[str, OrderStatus] = {
    "PENDING": OrderStatus.PENDING,
    "OPEN": OrderStatus.OPEN,
    "COMPLETE": OrderStatus.COMPLETE,
    "CANCELLED": OrderStatus.CANCELLED,
    "REJECTED": OrderStatus.REJECTED,
    "VALIDATION PENDING": OrderStatus.PENDING,
    "MODIFY PENDING": OrderStatus.OPEN,
    "CANCEL PENDING": OrderStatus.OPEN,
    "TRIGGER PENDING": OrderStatus.OPEN,
}


def map_status(broker_status: str | None) -> OrderStatus:
    """Unknown statuses are treated as still in flight at the broker."""
    return BROKER_STATUS_MAP.get((broker_status or "").upper(), OrderStatus.SUBMITTED)
