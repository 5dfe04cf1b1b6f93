"""Tests for risk limit validation and management."""

import pytest

from tradeguard.audit.recorder import AuditEvent, AuditSource, build_entry
from tradeguard.errors import LimitValidationError, NotFoundError
from tradeguard.models.risk import LimitStatus, LimitType, LimitUnit
from tradeguard.risk.limits import validate_limit
from tradeguard.storage import audit_repo


class TestValidateLimit:
    @pytest.mark.parametrize(
        "limit_type,value,unit",
        [
            (LimitType.DAILY_LOSS, 2, LimitUnit.PERCENTAGE),
            (LimitType.DAILY_LOSS, 100, LimitUnit.PERCENTAGE),
            (LimitType.POSITION_SIZE, 50_000, LimitUnit.ABSOLUTE),
            (LimitType.MAX_DRAWDOWN, 10, LimitUnit.PERCENTAGE),
            (LimitType.MAX_POSITIONS, 5, LimitUnit.COUNT),
        ],
    )
    def test_valid(self, limit_type, value, unit):
        validate_limit(limit_type, value, unit)

    @pytest.mark.parametrize(
        "limit_type,value,unit,message",
        [
            (LimitType.DAILY_LOSS, 0, LimitUnit.PERCENTAGE, "between 0 and 100"),
            (LimitType.DAILY_LOSS, 101, LimitUnit.PERCENTAGE, "between 0 and 100"),
            (LimitType.POSITION_SIZE, -1, LimitUnit.ABSOLUTE, "greater than 0"),
            (LimitType.POSITION_SIZE, 5, LimitUnit.COUNT, "PERCENTAGE or ABSOLUTE"),
            (LimitType.MAX_POSITIONS, 5, LimitUnit.PERCENTAGE, "COUNT unit"),
            (LimitType.MAX_POSITIONS, 2.5, LimitUnit.COUNT, "positive integer"),
            (LimitType.MAX_POSITIONS, 0, LimitUnit.COUNT, "positive integer"),
        ],
    )
    def test_invalid(self, limit_type, value, unit, message):
        with pytest.raises(LimitValidationError, match=message):
            validate_limit(limit_type, value, unit)


class TestRiskLimitManager:
    async def test_create_and_list(self, orchestrator):
        limits = orchestrator.limits
        created = limits.create("user-1", LimitType.DAILY_LOSS, 2, LimitUnit.PERCENTAGE)
        assert [lim.id for lim in limits.list_limits("user-1")] == [created.id]
        assert limits.list_limits("user-2") == []

    async def test_changes_are_audited(self, orchestrator, queue):
        limits = orchestrator.limits
        created = limits.create("user-1", LimitType.POSITION_SIZE, 10, LimitUnit.PERCENTAGE)
        limits.update(created.id, "user-1", value=5)
        limits.delete(created.id, "user-1")
        await orchestrator.tasks.join()
        actions = [
            j.payload["payload"]["action"]
            for j in queue.named("audit")
            if j.payload["event"] == "RISK_LIMIT_CHANGED"
        ]
        assert actions == ["RISK_LIMIT_CREATED", "RISK_LIMIT_UPDATED", "RISK_LIMIT_DELETED"]

    async def test_invalid_update_rejected(self, orchestrator):
        limits = orchestrator.limits
        created = limits.create("user-1", LimitType.POSITION_SIZE, 10, LimitUnit.PERCENTAGE)
        with pytest.raises(LimitValidationError):
            limits.update(created.id, "user-1", value=150)
        assert limits.list_limits("user-1")[0].value == 10

    async def test_deactivate(self, orchestrator):
        limits = orchestrator.limits
        created = limits.create("user-1", LimitType.MAX_POSITIONS, 3, LimitUnit.COUNT)
        assert limits.deactivate(created.id, "user-1").status == LimitStatus.INACTIVE
        assert limits.list_limits("user-1", status=LimitStatus.ACTIVE) == []

    async def test_other_users_limit_not_found(self, orchestrator):
        created = orchestrator.limits.create("user-1", LimitType.MAX_POSITIONS, 3, LimitUnit.COUNT)
        with pytest.raises(NotFoundError):
            orchestrator.limits.delete(created.id, "user-2")

    async def test_violations_and_summary(self, orchestrator, conn):
        orchestrator.limits.create("user-1", LimitType.DAILY_LOSS, 2, LimitUnit.PERCENTAGE)
        for check in ("DAILY_LOSS", "MAX_POSITIONS"):
            audit_repo.insert_entry(
                conn,
                build_entry(
                    AuditEvent.RISK_VIOLATION,
                    "user-1",
                    AuditSource.RISK_ENGINE,
                    {"check": check},
                    result="FAILURE",
                ),
            )
        rows = orchestrator.limits.violations("user-1", check="MAX_POSITIONS")
        assert [r["payload"]["check"] for r in rows] == ["MAX_POSITIONS"]
        summary = orchestrator.limits.summary("user-1")
        assert summary["active_limits"] == 1
        assert summary["limits_by_type"] == {"DAILY_LOSS": {"value": 2, "unit": "PERCENTAGE"}}
        assert summary["recent_violations"] == 2
