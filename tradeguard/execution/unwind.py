"""Best-effort unwind of all exposure when trading is halted."""

import asyncio
import logging
import sqlite3
from collections import defaultdict
from dataclasses import dataclass

from tradeguard.audit.recorder import AuditEvent, AuditRecorder, AuditSource
from tradeguard.broker.client import BrokerClient
from tradeguard.broker.sessions import BrokerSessions
from tradeguard.errors import CredentialUnavailableError
from tradeguard.models.system import BrokerPosition
from tradeguard.models.trading import Order, OrderStatus
from tradeguard.storage import order_repo

logger = logging.getLogger(__name__)


@dataclass
class UnwindReport:
    positions_squared_off: int = 0
    position_failures: int = 0
    orders_cancelled: int = 0
    order_failures: int = 0


class Unwinder:
    """Squares off every open position, then cancels every live order.

    Each position and order is attempted independently; a failure is logged
    and counted, and the remaining items still run.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        sessions: BrokerSessions,
        audit: AuditRecorder | None = None,
    ):
        self.conn = conn
        self.sessions = sessions
        self.audit = audit

    async def unwind(self) -> UnwindReport:
        report = UnwindReport()
        try:
            await self.square_off_all(report)
        except Exception:
            logger.exception("Square-off pass aborted; cancelling orders anyway")
        await self.cancel_all(report)
        return report

    async def square_off_all(self, report: UnwindReport) -> None:
        users = self.sessions.active_users()
        results = await asyncio.gather(
            *(self._square_off_user(u, report) for u in users), return_exceptions=True
        )
        for user_id, result in zip(users, results):
            if isinstance(result, Exception):
                report.position_failures += 1
                logger.error("Square-off failed for user %s: %s", user_id, result)

    async def _square_off_user(self, user_id: str, report: UnwindReport) -> None:
        try:
            client = self.sessions.open(user_id)
        except CredentialUnavailableError as e:
            logger.warning("Cannot square off for user %s: %s", user_id, e)
            return
        async with client:
            try:
                positions = await client.get_positions()
            except Exception:
                logger.exception("Failed to fetch positions for user %s", user_id)
                report.position_failures += 1
                return
            open_positions = [p for p in positions if p.quantity != 0]
            results = await asyncio.gather(
                *(self._exit(client, user_id, p) for p in open_positions),
                return_exceptions=True,
            )
        for position, result in zip(open_positions, results):
            if isinstance(result, Exception):
                report.position_failures += 1
                logger.error(
                    "Failed to square off %s:%s for user %s: %s",
                    position.exchange, position.symbol, user_id, result,
                )
            else:
                report.positions_squared_off += 1

    async def _exit(self, client: BrokerClient, user_id: str, position: BrokerPosition) -> None:
        response = await client.exit_position(position)
        logger.info(
            "Squared off %s:%s qty %d for user %s",
            position.exchange, position.symbol, position.quantity, user_id,
        )
        if self.audit is not None:
            self.audit.record(
                AuditEvent.POSITION_SQUARED_OFF,
                user_id,
                AuditSource.KILL_SWITCH,
                {
                    "symbol": position.symbol,
                    "exchange": position.exchange,
                    "quantity": position.quantity,
                    "broker_order_id": response.get("order_id"),
                },
            )

    async def cancel_all(self, report: UnwindReport) -> None:
        by_user: dict[str, list[Order]] = defaultdict(list)
        for order in order_repo.get_open_orders_with_broker_id(self.conn):
            by_user[order.user_id].append(order)
        results = await asyncio.gather(
            *(self._cancel_user(u, orders, report) for u, orders in by_user.items()),
            return_exceptions=True,
        )
        for (user_id, orders), result in zip(by_user.items(), results):
            if isinstance(result, Exception):
                report.order_failures += len(orders)
                logger.error("Order cancellation failed for user %s: %s", user_id, result)

    async def _cancel_user(self, user_id: str, orders: list[Order], report: UnwindReport) -> None:
        try:
            client = self.sessions.open(user_id)
        except CredentialUnavailableError as e:
            logger.warning("Cannot cancel %d orders for user %s: %s", len(orders), user_id, e)
            report.order_failures += len(orders)
            return
        async with client:
            results = await asyncio.gather(
                *(client.cancel_order(o.broker_order_id) for o in orders),
                return_exceptions=True,
            )
        for order, result in zip(orders, results):
            if isinstance(result, Exception):
                report.order_failures += 1
                logger.error("Failed to cancel order %s: %s", order.id, result)
                continue
            try:
                order_repo.save_order(
                    self.conn,
                    order_repo.require_order(self.conn, order.id).update(
                        status=OrderStatus.CANCELLED,
                        status_message="Cancelled by kill switch",
                    ),
                )
            except Exception:
                # The reconciler may have moved it to a terminal state meanwhile.
                logger.exception("Order %s cancelled at broker but not updated locally", order.id)
            report.orders_cancelled += 1
            if self.audit is not None:
                self.audit.record(
                    AuditEvent.ORDER_CANCELLED,
                    user_id,
                    AuditSource.KILL_SWITCH,
                    {"order_id": order.id, "broker_order_id": order.broker_order_id},
                )
