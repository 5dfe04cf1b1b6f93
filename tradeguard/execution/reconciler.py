"""Bounded polling of the broker to converge local order state."""

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable

from tradeguard.audit.recorder import AuditEvent, AuditRecorder, AuditSource
from tradeguard.broker.client import BrokerClient
from tradeguard.errors import InvariantViolation
from tradeguard.execution.status_map import map_status
from tradeguard.models.system import BrokerOrderState
from tradeguard.models.trading import Order
from tradeguard.runtime.background import BackgroundTasks
from tradeguard.storage import order_repo

logger = logging.getLogger(__name__)


class OrderReconciler:
    """One keyed background task per order.

    Each attempt sleeps ``interval`` seconds and then polls. Polling stops on a
    terminal status or after ``max_attempts`` polls, leaving the order in its
    last observed state.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        tasks: BackgroundTasks,
        audit: AuditRecorder | None = None,
        interval: float = 5.0,
        max_attempts: int = 60,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.conn = conn
        self.tasks = tasks
        self.audit = audit
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    @staticmethod
    def task_key(order_id: str) -> str:
        return f"reconcile:{order_id}"

    def start(self, order_id: str, client: BrokerClient) -> asyncio.Task:
        """Start polling. The reconciler takes ownership of ``client`` and closes it."""
        return self.tasks.spawn(self.reconcile(order_id, client), key=self.task_key(order_id))

    def stop(self, order_id: str) -> bool:
        return self.tasks.cancel(self.task_key(order_id))

    async def reconcile(self, order_id: str, client: BrokerClient) -> Order | None:
        try:
            return await self._poll(order_id, client)
        finally:
            await client.aclose()

    async def _poll(self, order_id: str, client: BrokerClient) -> Order | None:
        order = order_repo.get_order(self.conn, order_id)
        for attempt in range(1, self.max_attempts + 1):
            await self._sleep(self.interval)

            order = order_repo.get_order(self.conn, order_id)
            if order is None or order.status.is_terminal or not order.broker_order_id:
                return order

            try:
                state = await client.get_order(order.broker_order_id)
            except Exception as e:
                logger.warning(
                    "Poll %d/%d for order %s failed: %s",
                    attempt, self.max_attempts, order_id, e,
                )
                continue
            if state is None:
                logger.warning("Broker has no record of order %s; stopping", order.broker_order_id)
                return order

            try:
                order = self._apply(order, state)
            except InvariantViolation:
                # Moved to a terminal state elsewhere (user or kill-switch cancel).
                return order_repo.get_order(self.conn, order_id)
            if order.status.is_terminal:
                logger.info("Order %s reached %s after %d polls", order_id, order.status, attempt)
                return order

        logger.info(
            "Stopped polling order %s after %d attempts (last status %s)",
            order_id, self.max_attempts, order.status if order else None,
        )
        return order

    def _apply(self, order: Order, state: BrokerOrderState) -> Order:
        status = map_status(state.status)
        filled = state.filled_quantity
        if filled > order.quantity:
            logger.warning(
                "Broker reports fill %d > quantity %d for order %s; clamping",
                filled, order.quantity, order.id,
            )
            filled = order.quantity
        average_price = state.average_price if filled > 0 else order.average_price

        if (
            status == order.status
            and filled == order.filled_quantity
            and average_price == order.average_price
        ):
            return order

        updated = order_repo.save_order(
            self.conn,
            order.update(
                status=status,
                filled_quantity=filled,
                average_price=average_price,
                status_message=state.status_message,
            ),
        )
        if self.audit is not None and status != order.status:
            self.audit.record(
                AuditEvent.ORDER_STATUS_UPDATED,
                order.user_id,
                AuditSource.EXECUTION_ENGINE,
                {
                    "order_id": order.id,
                    "broker_order_id": order.broker_order_id,
                    "from": order.status.value,
                    "to": status.value,
                    "filled_quantity": filled,
                    "average_price": average_price,
                },
            )
        return updated
