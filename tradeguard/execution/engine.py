"""Execution engine: approved intent -> broker order -> reconciliation."""

import logging
import sqlite3

from tradeguard.audit.recorder import AuditEvent, AuditRecorder, AuditSource
from tradeguard.broker.sessions import BrokerSessions
from tradeguard.errors import CredentialUnavailableError, InvalidStateError, KillSwitchActiveError
from tradeguard.execution.reconciler import OrderReconciler
from tradeguard.models.common import new_id, utc_now_iso
from tradeguard.models.trading import (
    CANCELLABLE_STATUSES,
    IntentStatus,
    Order,
    OrderStatus,
    TradeIntent,
)
from tradeguard.risk.circuit_breaker import CircuitBreaker
from tradeguard.risk.kill_switch import KillSwitch
from tradeguard.storage import intent_repo, order_repo

logger = logging.getLogger(__name__)


class ExecutionEngine:
    def __init__(
        self,
        conn: sqlite3.Connection,
        sessions: BrokerSessions,
        kill_switch: KillSwitch,
        circuit_breaker: CircuitBreaker,
        reconciler: OrderReconciler,
        audit: AuditRecorder,
    ):
        self.conn = conn
        self.sessions = sessions
        self.kill_switch = kill_switch
        self.circuit_breaker = circuit_breaker
        self.reconciler = reconciler
        self.audit = audit

    async def execute_trade_intent(self, intent_id: str) -> Order:
        """Submit an APPROVED intent to the broker.

        Raises InvalidStateError for any other intent status so a redelivered
        job can never place a second order.
        """
        intent = intent_repo.require_intent(self.conn, intent_id)
        if intent.status != IntentStatus.APPROVED:
            raise InvalidStateError(
                f"Trade intent {intent_id} is {intent.status}, expected APPROVED"
            )

        try:
            await self.kill_switch.enforce()
        except KillSwitchActiveError as e:
            intent_repo.transition_intent(
                self.conn, intent, IntentStatus.FAILED, rejection_reason=e.message
            )
            self._audit_failure(intent, e.message)
            raise

        try:
            client = self.sessions.open(intent.user_id)
        except CredentialUnavailableError as e:
            # Intent stays APPROVED so the queue can retry once a token is set;
            # the breaker counts it once, when the retries run out.
            logger.warning("No broker session for intent %s: %s", intent_id, e.message)
            self._audit_failure(intent, e.message)
            raise

        order = order_repo.create_order(self.conn, Order.from_intent(new_id(), intent))
        logger.info(
            "Placing order %s for intent %s: %s %d %s:%s",
            order.id, intent.id, intent.transaction_type, intent.quantity,
            intent.exchange, intent.symbol,
        )
        try:
            placed = await client.place_order(_order_params(intent))
        except Exception as e:
            await client.aclose()
            message = getattr(e, "message", None) or str(e)
            logger.error("Order %s failed: %s", order.id, message)
            order_repo.save_order(
                self.conn,
                order.update(
                    status=OrderStatus.FAILED,
                    status_message=message,
                    broker_response=_error_response(e),
                ),
            )
            intent_repo.transition_intent(
                self.conn, intent, IntentStatus.FAILED, rejection_reason=message
            )
            await self.circuit_breaker.increment(intent.user_id)
            self._audit_failure(intent, message, order_id=order.id)
            raise

        order = order_repo.save_order(
            self.conn,
            order.update(
                broker_order_id=placed["order_id"],
                status=OrderStatus.SUBMITTED,
                placed_at=utc_now_iso(),
                broker_response=placed["raw"],
            ),
        )
        intent_repo.transition_intent(self.conn, intent, IntentStatus.EXECUTED)
        await self.circuit_breaker.reset(intent.user_id)
        self.audit.record(
            AuditEvent.ORDER_PLACED,
            intent.user_id,
            AuditSource.EXECUTION_ENGINE,
            {
                "order_id": order.id,
                "trade_intent_id": intent.id,
                "broker_order_id": order.broker_order_id,
                "symbol": order.symbol,
                "transaction_type": order.transaction_type.value,
                "quantity": order.quantity,
            },
        )
        logger.info("Order %s placed: broker id %s", order.id, order.broker_order_id)

        self.reconciler.start(order.id, client)
        return order

    def mark_failed(self, intent_id: str, reason: str) -> TradeIntent | None:
        """Fail an intent whose execution job gave up.

        Returns the failed intent, or None when it was no longer APPROVED.
        """
        intent = intent_repo.get_intent(self.conn, intent_id)
        if intent is None or intent.status != IntentStatus.APPROVED:
            return None
        logger.error("Marking intent %s FAILED: %s", intent_id, reason)
        return intent_repo.transition_intent(
            self.conn, intent, IntentStatus.FAILED, rejection_reason=reason
        )

    async def cancel_order(self, order_id: str, user_id: str) -> Order:
        order = order_repo.get_user_order(self.conn, order_id, user_id)
        if order.status.value not in CANCELLABLE_STATUSES:
            raise InvalidStateError(f"Cannot cancel order in status {order.status}")
        if not order.broker_order_id:
            raise InvalidStateError(f"Order {order_id} has no broker order id")

        async with self.sessions.open(user_id) as client:
            await client.cancel_order(order.broker_order_id)

        self.reconciler.stop(order.id)
        order = order_repo.save_order(
            self.conn,
            order_repo.require_order(self.conn, order.id).update(
                status=OrderStatus.CANCELLED,
                status_message="Order cancelled by user",
            ),
        )
        self.audit.record(
            AuditEvent.ORDER_CANCELLED,
            user_id,
            AuditSource.USER,
            {"order_id": order.id, "broker_order_id": order.broker_order_id},
        )
        logger.info("Order %s cancelled by user %s", order.id, user_id)
        return order

    def get_order(self, order_id: str, user_id: str) -> Order:
        return order_repo.get_user_order(self.conn, order_id, user_id)

    def list_orders(
        self,
        user_id: str,
        status: OrderStatus | None = None,
        symbol: str | None = None,
        limit: int = 100,
    ) -> list[Order]:
        return order_repo.list_orders(self.conn, user_id, status=status, symbol=symbol, limit=limit)

    def _audit_failure(self, intent: TradeIntent, message: str, order_id: str | None = None) -> None:
        self.audit.record(
            AuditEvent.ORDER_FAILED,
            intent.user_id,
            AuditSource.EXECUTION_ENGINE,
            {"trade_intent_id": intent.id, "order_id": order_id, "error": message},
            result="FAILURE",
        )


def _order_params(intent: TradeIntent) -> dict:
    return {
        "symbol": intent.symbol,
        "exchange": intent.exchange,
        "transaction_type": intent.transaction_type,
        "order_type": intent.order_type,
        "product_type": intent.product_type,
        "quantity": intent.quantity,
        "price": intent.price,
        "trigger_price": intent.trigger_price,
        "validity": intent.validity,
        "tag": f"TI_{intent.id[:8]}",
    }


def _error_response(error: Exception) -> dict | None:
    response = getattr(error, "response", None)
    if isinstance(response, dict):
        return response
    return {"error": str(error)}
