"""Risk limit and risk check models."""

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any


class LimitType(StrEnum):
    DAILY_LOSS = "DAILY_LOSS"
    POSITION_SIZE = "POSITION_SIZE"
    MAX_POSITIONS = "MAX_POSITIONS"
    MAX_DRAWDOWN = "MAX_DRAWDOWN"


class LimitUnit(StrEnum):
    PERCENTAGE = "PERCENTAGE"
    ABSOLUTE = "ABSOLUTE"
    COUNT = "COUNT"


class LimitStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class CheckName(StrEnum):
    KILL_SWITCH = "KILL_SWITCH"
    DAILY_LOSS = "DAILY_LOSS"
    POSITION_SIZE = "POSITION_SIZE"
    MAX_POSITIONS = "MAX_POSITIONS"
    CIRCUIT_BREAKER = "CIRCUIT_BREAKER"


@dataclass(frozen=True)
class RiskLimit:
    id: str
    user_id: str
    limit_type: LimitType
    value: float
    unit: LimitUnit
    status: LimitStatus = LimitStatus.ACTIVE
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class RiskCheckResult:
    check: CheckName
    passed: bool
    critical: bool = False
    reason: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RiskVerdict:
    passed: bool
    checks: list[RiskCheckResult]
    failed_check: RiskCheckResult | None = None
    auto_triggered: bool = False

    @property
    def critical(self) -> bool:
        return self.failed_check is not None and self.failed_check.critical

    @property
    def data(self) -> dict[str, Any]:
        return {c.check.value: c.data for c in self.checks}
