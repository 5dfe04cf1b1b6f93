"""Risk evaluator: gates a PENDING trade intent before it can be executed."""

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable

from tradeguard.audit.recorder import AuditEvent, AuditRecorder, AuditSource
from tradeguard.broker.sessions import BrokerSessions
from tradeguard.errors import CredentialUnavailableError, InvalidStateError
from tradeguard.models.common import start_of_day_iso, utc_now_iso
from tradeguard.models.risk import CheckName, LimitType, RiskCheckResult, RiskVerdict
from tradeguard.models.trading import IntentStatus, TradeIntent
from tradeguard.queue.jobs import PRIORITY_EXECUTE_ORDER, JobName, QueueName
from tradeguard.risk.account import AccountValueProvider
from tradeguard.risk.checks import daily_loss, kill_switch, max_positions, position_size
from tradeguard.risk.circuit_breaker import CircuitBreaker
from tradeguard.risk.kill_switch import KillSwitch
from tradeguard.storage import intent_repo, order_repo, risk_limit_repo

logger = logging.getLogger(__name__)

# Declared order is the tie-break when more than one check fails.
CHECK_ORDER = (
    CheckName.DAILY_LOSS,
    CheckName.POSITION_SIZE,
    CheckName.MAX_POSITIONS,
    CheckName.CIRCUIT_BREAKER,
)

_CHECK_ERROR_REASONS = {
    CheckName.DAILY_LOSS: "Error checking daily loss limit",
    CheckName.POSITION_SIZE: "Error checking position size limit",
    CheckName.MAX_POSITIONS: "Error checking max positions limit",
    CheckName.CIRCUIT_BREAKER: "Error checking circuit breaker",
}


class RiskEvaluator:
    def __init__(
        self,
        conn: sqlite3.Connection,
        queue,
        sessions: BrokerSessions,
        kill_switch: KillSwitch,
        circuit_breaker: CircuitBreaker,
        account_values: AccountValueProvider,
        audit: AuditRecorder,
    ):
        self.conn = conn
        self.queue = queue
        self.sessions = sessions
        self.kill_switch = kill_switch
        self.circuit_breaker = circuit_breaker
        self.account_values = account_values
        self.audit = audit

    async def evaluate(self, intent_id: str) -> RiskVerdict:
        """Run every check, then persist APPROVED or REJECTED.

        Checks run concurrently; the first failure in CHECK_ORDER decides the
        rejection reason. A critical failure also trips the kill switch.
        """
        intent = intent_repo.require_intent(self.conn, intent_id)
        if intent.status != IntentStatus.PENDING:
            raise InvalidStateError(
                f"Trade intent {intent_id} is {intent.status}, expected PENDING"
            )
        logger.info("Running risk checks for trade intent %s", intent_id)

        if await self.kill_switch.is_enabled():
            result = kill_switch.check(True)
            self._reject(intent, result)
            return RiskVerdict(passed=False, checks=[result], failed_check=result)

        checks = await self.run_checks(intent)
        failed = next((c for c in checks if not c.passed), None)

        if failed is not None:
            logger.warning(
                "Risk check %s failed for %s: %s", failed.check, intent_id, failed.reason
            )
            self._reject(intent, failed)
            self.audit.record(
                AuditEvent.RISK_VIOLATION,
                intent.user_id,
                AuditSource.RISK_ENGINE,
                {"trade_intent_id": intent.id, **failed.to_dict()},
                result="FAILURE",
            )
            auto_triggered = False
            if failed.critical:
                await self.kill_switch.auto_trigger(intent.user_id, failed.reason or failed.check)
                auto_triggered = True
            return RiskVerdict(
                passed=False, checks=checks, failed_check=failed, auto_triggered=auto_triggered
            )

        intent_repo.transition_intent(
            self.conn,
            intent,
            IntentStatus.APPROVED,
            risk_check_result={
                "passed": True,
                "checks": [c.to_dict() for c in checks],
                "checked_at": utc_now_iso(),
            },
        )
        await self.queue.enqueue(
            QueueName.EXECUTION,
            JobName.EXECUTE_ORDER,
            {"intent_id": intent.id, "user_id": intent.user_id},
            priority=PRIORITY_EXECUTE_ORDER,
        )
        self.audit.record(
            AuditEvent.TRADE_INTENT_APPROVED,
            intent.user_id,
            AuditSource.RISK_ENGINE,
            {"trade_intent_id": intent.id, "checks": [c.check.value for c in checks]},
        )
        logger.info("Trade intent %s approved and queued for execution", intent_id)
        return RiskVerdict(passed=True, checks=checks)

    async def run_checks(self, intent: TradeIntent) -> list[RiskCheckResult]:
        coros: dict[CheckName, Awaitable[RiskCheckResult]] = {
            CheckName.DAILY_LOSS: self._daily_loss(intent),
            CheckName.POSITION_SIZE: self._position_size(intent),
            CheckName.MAX_POSITIONS: self._max_positions(intent),
            CheckName.CIRCUIT_BREAKER: self.circuit_breaker.check(intent.user_id),
        }
        outcomes = await asyncio.gather(
            *(coros[name] for name in CHECK_ORDER), return_exceptions=True
        )
        results = []
        for name, outcome in zip(CHECK_ORDER, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Error running %s check: %s", name, outcome, exc_info=outcome)
                outcome = RiskCheckResult(
                    check=name, passed=False, reason=_CHECK_ERROR_REASONS[name]
                )
            results.append(outcome)
        return results

    async def _daily_loss(self, intent: TradeIntent) -> RiskCheckResult:
        limit = risk_limit_repo.get_active_limit(self.conn, intent.user_id, LimitType.DAILY_LOSS)
        if limit is None:
            return daily_loss.check([], 0.0, None)
        orders = order_repo.get_completed_since(self.conn, intent.user_id, start_of_day_iso())
        account_value = await self.account_values.get(intent.user_id)
        return daily_loss.check(orders, account_value, limit)

    async def _position_size(self, intent: TradeIntent) -> RiskCheckResult:
        limit = risk_limit_repo.get_active_limit(
            self.conn, intent.user_id, LimitType.POSITION_SIZE
        )
        if limit is None:
            return position_size.check(intent.price, intent.quantity, 0.0, None)
        account_value = await self.account_values.get(intent.user_id)
        return position_size.check(intent.price, intent.quantity, account_value, limit)

    async def _max_positions(self, intent: TradeIntent) -> RiskCheckResult:
        limit = risk_limit_repo.get_active_limit(
            self.conn, intent.user_id, LimitType.MAX_POSITIONS
        )
        if limit is None:
            return max_positions.check(None, None)
        return max_positions.check(await self._open_position_count(intent.user_id), limit)

    async def _open_position_count(self, user_id: str) -> int | None:
        """None when the broker cannot be asked; the check then passes."""
        try:
            client = self.sessions.open(user_id)
        except CredentialUnavailableError:
            return None
        try:
            async with client:
                positions = await client.get_positions()
        except Exception as e:
            logger.warning("Position count unavailable for user %s: %s", user_id, e)
            return None
        return sum(1 for p in positions if p.quantity != 0)

    def _reject(self, intent: TradeIntent, failed: RiskCheckResult) -> None:
        intent_repo.transition_intent(
            self.conn,
            intent,
            IntentStatus.REJECTED,
            rejection_reason=failed.reason,
            risk_check_result={
                "passed": False,
                "check": failed.check.value,
                "reason": failed.reason,
                "checked_at": utc_now_iso(),
            },
        )
        self.audit.record(
            AuditEvent.TRADE_INTENT_REJECTED,
            intent.user_id,
            AuditSource.RISK_ENGINE,
            {"trade_intent_id": intent.id, "reason": failed.reason},
        )
        logger.info("Trade intent %s rejected: %s", intent.id, failed.reason)
