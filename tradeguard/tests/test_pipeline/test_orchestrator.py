"""End-to-end tests of the queue-driven pipeline."""

import sqlite3

import pytest

from tradeguard.errors import BrokerRejectedError, KillSwitchActiveError, RejectionError
from tradeguard.models.risk import LimitType, LimitUnit
from tradeguard.models.trading import (
    Exchange,
    IntentStatus,
    OrderStatus,
    OrderType,
    ProductType,
    TransactionType,
)
from tradeguard.storage import audit_repo, intent_repo, order_repo
from tradeguard.tests.helpers import order_state


async def _submit(orchestrator, user_id="user-1", **overrides):
    fields = dict(
        user_id=user_id,
        symbol="reliance",
        exchange=Exchange.NSE,
        transaction_type=TransactionType.BUY,
        order_type=OrderType.MARKET,
        product_type=ProductType.MIS,
        quantity=10,
    )
    fields.update(overrides)
    return await orchestrator.admit_intent(**fields)


class TestAdmission:
    async def test_creates_pending_intent_and_risk_job(self, orchestrator, conn, queue):
        intent = await _submit(orchestrator)
        assert intent.symbol == "RELIANCE"
        assert intent_repo.get_intent(conn, intent.id).status == IntentStatus.PENDING
        (job,) = queue.named("risk_check")
        assert job.priority == 1
        assert job.payload["intent_id"] == intent.id

    async def test_blocked_while_halted(self, orchestrator, conn):
        await orchestrator.kill_switch.enable("ops", "halt")
        with pytest.raises(KillSwitchActiveError):
            await _submit(orchestrator)
        assert intent_repo.list_intents(conn, "user-1") == []

    @pytest.mark.parametrize(
        "overrides",
        [
            {"quantity": 0},
            {"order_type": OrderType.LIMIT},
            {"order_type": OrderType.SL, "price": 100.0},
            {"order_type": OrderType.SL_M},
        ],
    )
    async def test_invalid_intent(self, orchestrator, overrides):
        with pytest.raises(RejectionError):
            await _submit(orchestrator, **overrides)


class TestPipeline:
    async def test_full_flow(self, orchestrator, conn, broker):
        broker.order_states = [order_state("OPEN"), order_state("COMPLETE", 10, 2450.0)]
        intent = await _submit(orchestrator)

        await orchestrator.run_until_idle()
        assert intent_repo.get_intent(conn, intent.id).status == IntentStatus.EXECUTED

        await orchestrator.reconciliations.join()
        await orchestrator.run_until_idle()
        (order,) = order_repo.list_orders(conn, "user-1")
        assert order.trade_intent_id == intent.id
        assert order.status == OrderStatus.COMPLETE
        assert order.average_price == 2450.0

        events = {row["event"] for row in audit_repo.list_entries(conn, user_id="user-1")}
        assert {
            "TRADE_INTENT_CREATED",
            "TRADE_INTENT_APPROVED",
            "ORDER_PLACED",
            "ORDER_STATUS_UPDATED",
        } <= events

    async def test_rejected_intent_never_executes(self, orchestrator, conn, broker):
        orchestrator.limits.create("user-1", LimitType.POSITION_SIZE, 1, LimitUnit.PERCENTAGE)
        intent = await _submit(orchestrator, order_type=OrderType.LIMIT, price=2500.0)
        await orchestrator.run_until_idle()
        assert intent_repo.get_intent(conn, intent.id).status == IntentStatus.REJECTED
        assert broker.placed == []

    async def test_repeated_failures_halt_all_users(self, orchestrator, conn, broker):
        broker.place_results = [BrokerRejectedError("HTTP 400: Insufficient funds")] * 5
        for _ in range(5):
            intent = await _submit(orchestrator)
            await orchestrator.run_until_idle()
            assert intent_repo.get_intent(conn, intent.id).status == IntentStatus.FAILED

        assert len(broker.placed) == 5
        assert await orchestrator.kill_switch.is_enabled() is True
        assert orchestrator.kill_switch.status().reason == (
            "AUTO: Circuit breaker: 5 consecutive failures"
        )
        with pytest.raises(KillSwitchActiveError):
            await _submit(orchestrator, user_id="someone-else")

    async def test_exhausted_execution_marks_intent_failed(self, orchestrator, conn):
        intent = await _submit(orchestrator, user_id="ghost")
        await orchestrator.run_until_idle()
        stored = intent_repo.get_intent(conn, intent.id)
        assert stored.status == IntentStatus.FAILED
        assert "No active broker account" in stored.rejection_reason
        assert await orchestrator.circuit_breaker.failure_count("ghost") == 1

    async def test_stop_closes_resources(self, orchestrator, conn):
        await orchestrator.start()
        await orchestrator.stop()
        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")
