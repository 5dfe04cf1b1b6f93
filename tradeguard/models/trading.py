"""Trade intent and order models with their lifecycle rules."""

from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from tradeguard.errors import InvariantViolation


class TransactionType(StrEnum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "TransactionType":
        return TransactionType.SELL if self is TransactionType.BUY else TransactionType.BUY


class OrderType(StrEnum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    SL = "SL"
    SL_M = "SL-M"


class ProductType(StrEnum):
    CNC = "CNC"
    MIS = "MIS"
    NRML = "NRML"


class Exchange(StrEnum):
    NSE = "NSE"
    BSE = "BSE"
    NFO = "NFO"
    BFO = "BFO"
    CDS = "CDS"
    MCX = "MCX"


class Validity(StrEnum):
    DAY = "DAY"
    IOC = "IOC"


class IntentStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXECUTED = "EXECUTED"
    FAILED = "FAILED"


# Forward-only. Anything absent from this table is unreachable.
INTENT_TRANSITIONS: dict[IntentStatus, frozenset[IntentStatus]] = {
    IntentStatus.PENDING: frozenset({IntentStatus.APPROVED, IntentStatus.REJECTED}),
    IntentStatus.APPROVED: frozenset({IntentStatus.EXECUTED, IntentStatus.FAILED}),
    IntentStatus.REJECTED: frozenset(),
    IntentStatus.EXECUTED: frozenset(),
    IntentStatus.FAILED: frozenset(),
}


class OrderStatus(StrEnum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    OPEN = "OPEN"
    COMPLETE = "COMPLETE"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_ORDER_STATUSES


TERMINAL_ORDER_STATUSES = frozenset(
    {OrderStatus.COMPLETE, OrderStatus.CANCELLED, OrderStatus.REJECTED, OrderStatus.FAILED}
)
OPEN_ORDER_STATUSES = frozenset(
    {OrderStatus.PENDING, OrderStatus.SUBMITTED, OrderStatus.OPEN}
)
# TRIGGER_PENDING is a broker-side state; it is accepted here so a raw status
# copied from the broker does not block a user cancel.
CANCELLABLE_STATUSES = frozenset({"PENDING", "SUBMITTED", "OPEN", "TRIGGER_PENDING"})


@dataclass(frozen=True)
class TradeIntent:
    id: str
    user_id: str
    symbol: str
    exchange: Exchange
    transaction_type: TransactionType
    order_type: OrderType
    product_type: ProductType
    quantity: int
    price: float | None = None
    trigger_price: float | None = None
    validity: Validity = Validity.DAY
    status: IntentStatus = IntentStatus.PENDING
    risk_check_result: dict[str, Any] | None = None
    rejection_reason: str | None = None
    created_at: str = ""
    updated_at: str = ""

    def transition(self, status: IntentStatus, **changes: Any) -> "TradeIntent":
        """Return a copy moved to ``status``; raises on a backwards move."""
        if status not in INTENT_TRANSITIONS[self.status]:
            raise InvariantViolation(
                f"Trade intent {self.id} cannot move {self.status} -> {status}"
            )
        return replace(self, status=status, **changes)


@dataclass(frozen=True)
class Order:
    id: str
    trade_intent_id: str | None
    user_id: str
    symbol: str
    exchange: str
    transaction_type: TransactionType
    order_type: OrderType
    product_type: ProductType
    quantity: int
    price: float | None = None
    trigger_price: float | None = None
    broker_order_id: str | None = None
    average_price: float | None = None
    filled_quantity: int = 0
    status: OrderStatus = OrderStatus.PENDING
    status_message: str | None = None
    placed_at: str | None = None
    broker_response: dict[str, Any] | None = field(default=None, compare=False)
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        if self.filled_quantity > self.quantity:
            raise InvariantViolation(
                f"Order {self.id}: filled {self.filled_quantity} > quantity {self.quantity}"
            )

    def update(self, **changes: Any) -> "Order":
        """Return an updated copy. Terminal orders never change again."""
        if self.status.is_terminal:
            raise InvariantViolation(
                f"Order {self.id} is {self.status} and can no longer change"
            )
        return replace(self, **changes)

    @classmethod
    def from_intent(cls, order_id: str, intent: TradeIntent) -> "Order":
        return cls(
            id=order_id,
            trade_intent_id=intent.id,
            user_id=intent.user_id,
            symbol=intent.symbol,
            exchange=intent.exchange.value,
            transaction_type=intent.transaction_type,
            order_type=intent.order_type,
            product_type=intent.product_type,
            quantity=intent.quantity,
            price=intent.price,
            trigger_price=intent.trigger_price,
        )
