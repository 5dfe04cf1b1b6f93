"""Fakes and builders shared by the test suite."""

import asyncio
import sqlite3
from typing import Any

from tradeguard.errors import CredentialUnavailableError
from tradeguard.models.common import new_id
from tradeguard.models.system import BrokerOrderState, BrokerPosition
from tradeguard.models.trading import (
    Exchange,
    IntentStatus,
    OrderType,
    ProductType,
    TradeIntent,
    TransactionType,
)
from tradeguard.queue.jobs import Job, MemoryJobQueue
from tradeguard.storage import intent_repo


class ManualClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingQueue(MemoryJobQueue):
    """MemoryJobQueue that keeps every enqueued job for assertions."""

    def __init__(self) -> None:
        super().__init__()
        self.jobs: list[Job] = []

    async def put(self, job: Job) -> None:
        self.jobs.append(job)
        await super().put(job)

    def named(self, name: str) -> list[Job]:
        return [j for j in self.jobs if j.name == name]


class FakeBroker:
    """Scripted broker. Lists are consumed front to back; exceptions are raised."""

    def __init__(self) -> None:
        self.place_results: list[Any] = []
        self.order_states: list[Any] = []
        self.positions: list[BrokerPosition] = []
        self.positions_error: Exception | None = None
        self.margins: dict | Exception = {"equity": {"net": 100_000.0}}
        self.cancel_errors: dict[str, Exception] = {}
        self.exit_errors: dict[str, Exception] = {}
        self.placed: list[dict] = []
        self.cancelled: list[str] = []
        self.exited: list[BrokerPosition] = []
        self.polls = 0
        self.closed = 0
        self._next_id = 1000

    async def __aenter__(self) -> "FakeBroker":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self.closed += 1

    async def place_order(self, params: dict) -> dict:
        self.placed.append(params)
        if self.place_results:
            result = self.place_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        self._next_id += 1
        return {"order_id": str(self._next_id), "raw": {"order_id": str(self._next_id)}}

    async def cancel_order(self, order_id: str, variety: str = "regular") -> dict:
        if order_id in self.cancel_errors:
            raise self.cancel_errors[order_id]
        self.cancelled.append(order_id)
        return {"order_id": order_id}

    async def get_order(self, order_id: str) -> BrokerOrderState | None:
        self.polls += 1
        if not self.order_states:
            return None
        state = self.order_states.pop(0)
        if isinstance(state, Exception):
            raise state
        return state

    async def get_positions(self) -> list[BrokerPosition]:
        if self.positions_error is not None:
            raise self.positions_error
        return list(self.positions)

    async def exit_position(self, position: BrokerPosition) -> dict:
        if position.symbol in self.exit_errors:
            raise self.exit_errors[position.symbol]
        self.exited.append(position)
        return {"order_id": f"exit-{position.symbol}"}

    async def get_margins(self) -> dict:
        if isinstance(self.margins, Exception):
            raise self.margins
        return self.margins


class FakeSessions:
    """Hands out the same FakeBroker to every user with a credential."""

    def __init__(self, broker: FakeBroker, users: list[str] | None = None):
        self.broker = broker
        self.users = list(users or ["user-1"])
        self.opened: list[str] = []

    def open(self, user_id: str) -> FakeBroker:
        if user_id not in self.users:
            raise CredentialUnavailableError(f"No active broker account for user {user_id}")
        self.opened.append(user_id)
        return self.broker

    def active_users(self) -> list[str]:
        return list(self.users)


async def instant_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


def order_state(status: str, filled: int = 0, avg: float | None = None) -> BrokerOrderState:
    return BrokerOrderState(
        status=status, filled_quantity=filled, average_price=avg, status_message=None
    )


def make_intent(
    conn: sqlite3.Connection,
    user_id: str = "user-1",
    status: IntentStatus = IntentStatus.PENDING,
    **overrides,
) -> TradeIntent:
    fields = dict(
        id=new_id(),
        user_id=user_id,
        symbol="RELIANCE",
        exchange=Exchange.NSE,
        transaction_type=TransactionType.BUY,
        order_type=OrderType.MARKET,
        product_type=ProductType.MIS,
        quantity=10,
        status=status,
    )
    fields.update(overrides)
    return intent_repo.create_intent(conn, TradeIntent(**fields))

