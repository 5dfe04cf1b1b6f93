"""Queue-driven orchestration: admission -> risk check -> execution -> audit.

Each stage is a job processor registered on the worker pool. The risk stage
enqueues execution only from its success path, so an intent's APPROVED
decision is always persisted before its execution job exists.
"""

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable
from pathlib import Path

from tradeguard.audit.recorder import AuditEvent, AuditRecorder, AuditSink, AuditSource
from tradeguard.broker.cipher import FernetCipher
from tradeguard.broker.sessions import BrokerSessions
from tradeguard.cache.memory import MemoryCache
from tradeguard.cache.redis_cache import RedisCache
from tradeguard.config.schema import Backend, EngineConfig
from tradeguard.errors import RejectionError
from tradeguard.execution.engine import ExecutionEngine
from tradeguard.execution.reconciler import OrderReconciler
from tradeguard.execution.unwind import Unwinder
from tradeguard.models.common import new_id
from tradeguard.models.risk import RiskVerdict
from tradeguard.models.trading import (
    Exchange,
    Order,
    OrderType,
    ProductType,
    TradeIntent,
    TransactionType,
    Validity,
)
from tradeguard.queue.jobs import (
    PRIORITY_RISK_CHECK,
    Job,
    JobName,
    MemoryJobQueue,
    QueueName,
    RedisJobQueue,
)
from tradeguard.queue.worker import WorkerPool
from tradeguard.risk.account import AccountValueProvider
from tradeguard.risk.circuit_breaker import CircuitBreaker
from tradeguard.risk.evaluator import RiskEvaluator
from tradeguard.risk.kill_switch import KillSwitch
from tradeguard.risk.limits import RiskLimitManager
from tradeguard.runtime.background import BackgroundTasks
from tradeguard.storage import intent_repo
from tradeguard.storage.database import connect, run_migrations

logger = logging.getLogger(__name__)


class Orchestrator:
    def __init__(
        self,
        config: EngineConfig,
        conn: sqlite3.Connection,
        queue,
        cache,
        sessions: BrokerSessions,
        tasks: BackgroundTasks | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.conn = conn
        self.queue = queue
        self.cache = cache
        self.sessions = sessions
        self.tasks = tasks or BackgroundTasks()
        self.reconciliations = BackgroundTasks()

        self.audit = AuditRecorder(queue, self.tasks)
        self.unwinder = Unwinder(conn, sessions, self.audit)
        self.kill_switch = KillSwitch(
            conn,
            cache,
            self.audit,
            unwinder=self.unwinder,
            cache_ttl_seconds=config.kill_switch.cache_ttl_seconds,
        )
        self.circuit_breaker = CircuitBreaker(
            cache,
            self.kill_switch,
            threshold=config.risk.circuit_breaker_threshold,
            window_seconds=config.risk.circuit_breaker_window_seconds,
        )
        self.account_values = AccountValueProvider(
            cache,
            sessions,
            fallback=config.risk.account_value_fallback,
            ttl_seconds=config.risk.account_value_ttl_seconds,
        )
        self.evaluator = RiskEvaluator(
            conn,
            queue,
            sessions,
            self.kill_switch,
            self.circuit_breaker,
            self.account_values,
            self.audit,
        )
        self.reconciler = OrderReconciler(
            conn,
            self.reconciliations,
            self.audit,
            interval=config.execution.poll_interval_seconds,
            max_attempts=config.execution.max_poll_attempts,
            sleep=sleep,
        )
        self.execution = ExecutionEngine(
            conn,
            sessions,
            self.kill_switch,
            self.circuit_breaker,
            self.reconciler,
            self.audit,
        )
        self.limits = RiskLimitManager(conn, self.audit)
        self.audit_sink = AuditSink(conn)

        self.workers = WorkerPool(
            queue,
            max_attempts=config.queue.max_attempts,
            backoff_seconds=config.queue.backoff_seconds,
            tasks=self.tasks,
        )
        self._register_processors()

    @classmethod
    def from_config(cls, config: EngineConfig, db_path: str | Path) -> "Orchestrator":
        """Wire real backends: SQLite at ``db_path``, cache and queue per config."""
        conn = connect(db_path)
        run_migrations(conn)

        if config.cache.backend == Backend.REDIS:
            cache = RedisCache.from_url(config.cache.redis_url)
        else:
            cache = MemoryCache()
        if config.queue.backend == Backend.REDIS:
            queue = RedisJobQueue.from_url(config.cache.redis_url)
        else:
            queue = MemoryJobQueue()

        sessions = BrokerSessions(
            conn,
            FernetCipher.from_env(config.broker.encryption_key_env),
            base_url=config.broker.base_url,
            timeout=config.broker.timeout_seconds,
        )
        return cls(config, conn, queue, cache, sessions)

    def _register_processors(self) -> None:
        q = self.config.queue
        self.workers.register(
            QueueName.RISK, JobName.RISK_CHECK, self.process_risk_check, concurrency=q.concurrency
        )
        self.workers.register(
            QueueName.EXECUTION,
            JobName.EXECUTE_ORDER,
            self.process_execute_order,
            concurrency=q.concurrency,
            on_exhausted=self.on_execution_exhausted,
        )
        self.workers.register(
            QueueName.AUDIT, JobName.AUDIT, self.audit_sink, concurrency=q.audit_concurrency
        )

    # --- Admission ---

    async def admit_intent(
        self,
        user_id: str,
        symbol: str,
        exchange: Exchange,
        transaction_type: TransactionType,
        order_type: OrderType,
        product_type: ProductType,
        quantity: int,
        price: float | None = None,
        trigger_price: float | None = None,
        validity: Validity = Validity.DAY,
    ) -> TradeIntent:
        """Create a PENDING intent and queue its risk check.

        Raises KillSwitchActiveError before anything is created while halted.
        """
        await self.kill_switch.enforce()
        _validate_intent(order_type, quantity, price, trigger_price)

        intent = intent_repo.create_intent(
            self.conn,
            TradeIntent(
                id=new_id(),
                user_id=user_id,
                symbol=symbol.upper(),
                exchange=exchange,
                transaction_type=transaction_type,
                order_type=order_type,
                product_type=product_type,
                quantity=quantity,
                price=price,
                trigger_price=trigger_price,
                validity=validity,
            ),
        )
        self.audit.record(
            AuditEvent.TRADE_INTENT_CREATED,
            user_id,
            AuditSource.USER,
            {
                "trade_intent_id": intent.id,
                "symbol": intent.symbol,
                "exchange": intent.exchange.value,
                "transaction_type": intent.transaction_type.value,
                "quantity": intent.quantity,
            },
        )
        await self.queue.enqueue(
            QueueName.RISK,
            JobName.RISK_CHECK,
            {"intent_id": intent.id, "user_id": user_id},
            priority=PRIORITY_RISK_CHECK,
        )
        logger.info("Trade intent %s admitted for %s", intent.id, user_id)
        return intent

    # --- Processors ---

    async def process_risk_check(self, job: Job) -> RiskVerdict:
        return await self.evaluator.evaluate(job.payload["intent_id"])

    async def process_execute_order(self, job: Job) -> Order:
        return await self.execution.execute_trade_intent(job.payload["intent_id"])

    async def on_execution_exhausted(self, job: Job, error: BaseException) -> None:
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        failed = self.execution.mark_failed(job.payload["intent_id"], message)
        if failed is not None:
            await self.circuit_breaker.increment(failed.user_id)

    # --- Lifecycle ---

    async def start(self) -> None:
        self.workers.start()

    async def run_until_idle(self) -> None:
        """Drain every queue inline, including jobs spawned along the way.

        Reconciliation loops keep running; await ``self.reconciliations.join()``
        to wait for them.
        """
        while True:
            await self.tasks.join()
            if not await self.workers.drain():
                await self.tasks.join()
                if not any([await self.queue.size(q) for q in self.workers.queue_names]):
                    return

    async def stop(self) -> None:
        await self.workers.stop()
        await self.reconciliations.shutdown()
        await self.cache.close()
        await self.queue.close()
        self.conn.close()


def _validate_intent(
    order_type: OrderType, quantity: int, price: float | None, trigger_price: float | None
) -> None:
    if quantity <= 0:
        raise RejectionError("Quantity must be a positive integer")
    if order_type in (OrderType.LIMIT, OrderType.SL) and price is None:
        raise RejectionError(f"{order_type} orders require a price")
    if order_type in (OrderType.SL, OrderType.SL_M) and trigger_price is None:
        raise RejectionError(f"{order_type} orders require a trigger price")
