"""Tests for the kill-switch unwind."""

from tradeguard.audit.recorder import AuditRecorder
from tradeguard.errors import BrokerRejectedError
from tradeguard.execution.unwind import Unwinder
from tradeguard.models.common import new_id
from tradeguard.models.system import BrokerPosition
from tradeguard.models.trading import Order, OrderStatus, OrderType, ProductType, TransactionType
from tradeguard.runtime.background import BackgroundTasks
from tradeguard.storage import order_repo
from tradeguard.tests.helpers import FakeBroker, FakeSessions


def _order(conn, user_id, broker_order_id, status=OrderStatus.OPEN):
    return order_repo.create_order(
        conn,
        Order(
            id=new_id(),
            trade_intent_id=None,
            user_id=user_id,
            symbol="SBIN",
            exchange="NSE",
            transaction_type=TransactionType.SELL,
            order_type=OrderType.LIMIT,
            product_type=ProductType.MIS,
            quantity=1,
            price=800.0,
            broker_order_id=broker_order_id,
            status=status,
        ),
    )


def _position(symbol, qty):
    return BrokerPosition(symbol=symbol, exchange="NSE", quantity=qty, product="MIS")


class TestUnwinder:
    async def test_squares_off_non_zero_positions(self, conn, broker, sessions):
        broker.positions = [_position("TCS", 5), _position("INFY", 0), _position("SBIN", -3)]
        report = await Unwinder(conn, sessions).unwind()
        assert sorted(p.symbol for p in broker.exited) == ["SBIN", "TCS"]
        assert report.positions_squared_off == 2
        assert report.position_failures == 0

    async def test_position_failure_does_not_stop_others(self, conn, broker, sessions):
        broker.positions = [_position("TCS", 5), _position("SBIN", 2)]
        broker.exit_errors["TCS"] = BrokerRejectedError("HTTP 400: circuit limit")
        report = await Unwinder(conn, sessions).unwind()
        assert [p.symbol for p in broker.exited] == ["SBIN"]
        assert report.positions_squared_off == 1
        assert report.position_failures == 1

    async def test_cancels_open_orders(self, conn, broker, sessions):
        first = _order(conn, "user-1", "B1")
        second = _order(conn, "user-1", "B2", status=OrderStatus.SUBMITTED)
        _order(conn, "user-1", None, status=OrderStatus.PENDING)
        done = _order(conn, "user-1", "B3", status=OrderStatus.COMPLETE)
        broker.cancel_errors["B2"] = BrokerRejectedError("HTTP 400: already filled")

        report = await Unwinder(conn, sessions).unwind()

        assert broker.cancelled == ["B1"]
        assert report.orders_cancelled == 1
        assert report.order_failures == 1
        cancelled = order_repo.get_order(conn, first.id)
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.status_message == "Cancelled by kill switch"
        assert order_repo.get_order(conn, second.id).status == OrderStatus.SUBMITTED
        assert order_repo.get_order(conn, done.id).status == OrderStatus.COMPLETE

    async def test_user_without_credential_counted(self, conn, broker):
        _order(conn, "ghost", "B9")
        report = await Unwinder(conn, FakeSessions(broker, users=["user-1"])).unwind()
        assert report.order_failures == 1
        assert broker.cancelled == []

    async def test_audits_each_action(self, conn, broker, sessions, queue):
        tasks = BackgroundTasks()
        broker.positions = [_position("TCS", 5)]
        _order(conn, "user-1", "B1")
        await Unwinder(conn, sessions, AuditRecorder(queue, tasks)).unwind()
        await tasks.join()
        events = [j.payload["event"] for j in queue.named("audit")]
        assert events == ["POSITION_SQUARED_OFF", "ORDER_CANCELLED"]

    async def test_cancels_orders_when_user_listing_fails(self, conn, broker, sessions):
        def locked():
            raise RuntimeError("db locked")

        sessions.active_users = locked
        _order(conn, "user-1", "B1")
        report = await Unwinder(conn, sessions).unwind()
        assert broker.cancelled == ["B1"]
        assert report.orders_cancelled == 1

    async def test_client_close_failure_does_not_abort_unwind(self, conn):
        class UnclosableBroker(FakeBroker):
            async def __aexit__(self, *exc):
                raise RuntimeError("connection reset")

        broker = UnclosableBroker()
        broker.positions = [_position("TCS", 5)]
        _order(conn, "user-1", "B1")
        report = await Unwinder(conn, FakeSessions(broker)).unwind()
        assert [p.symbol for p in broker.exited] == ["TCS"]
        assert broker.cancelled == ["B1"]
        assert report.position_failures == 1
        assert report.order_failures == 1
