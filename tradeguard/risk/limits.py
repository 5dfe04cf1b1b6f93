"""Per-user risk limit management with validation and audit."""

import logging
import sqlite3
from dataclasses import replace
from datetime import timedelta

from tradeguard.audit.recorder import AuditEvent, AuditRecorder, AuditSource
from tradeguard.errors import LimitValidationError
from tradeguard.models.common import new_id, utc_now
from tradeguard.models.risk import LimitStatus, LimitType, LimitUnit, RiskLimit
from tradeguard.storage import audit_repo, risk_limit_repo

logger = logging.getLogger(__name__)

_LABELS = {
    LimitType.DAILY_LOSS: "Daily loss",
    LimitType.POSITION_SIZE: "Position size",
    LimitType.MAX_DRAWDOWN: "Max drawdown",
}


def validate_limit(limit_type: LimitType, value: float, unit: LimitUnit) -> None:
    """Raise LimitValidationError if ``value``/``unit`` make no sense for the type."""
    if limit_type == LimitType.MAX_POSITIONS:
        if unit != LimitUnit.COUNT:
            raise LimitValidationError("Max positions must use COUNT unit")
        if value <= 0 or value != int(value):
            raise LimitValidationError("Max positions must be a positive integer")
        return

    label = _LABELS[limit_type]
    if unit == LimitUnit.PERCENTAGE:
        if value <= 0 or value > 100:
            raise LimitValidationError(f"{label} percentage must be between 0 and 100")
    elif unit == LimitUnit.ABSOLUTE:
        if value <= 0:
            raise LimitValidationError(f"{label} absolute value must be greater than 0")
    else:
        raise LimitValidationError(f"{label} must use PERCENTAGE or ABSOLUTE unit")


class RiskLimitManager:
    def __init__(self, conn: sqlite3.Connection, audit: AuditRecorder):
        self.conn = conn
        self.audit = audit

    def create(
        self, user_id: str, limit_type: LimitType, value: float, unit: LimitUnit
    ) -> RiskLimit:
        validate_limit(limit_type, value, unit)
        limit = risk_limit_repo.create_limit(
            self.conn,
            RiskLimit(id=new_id(), user_id=user_id, limit_type=limit_type, value=value, unit=unit),
        )
        logger.info("Risk limit created: %s %s=%g %s", user_id, limit_type, value, unit)
        self._audit(limit, "RISK_LIMIT_CREATED", value=value, unit=unit.value)
        return limit

    def update(
        self,
        limit_id: str,
        user_id: str,
        value: float | None = None,
        unit: LimitUnit | None = None,
        status: LimitStatus | None = None,
    ) -> RiskLimit:
        limit = risk_limit_repo.get_limit(self.conn, limit_id, user_id)
        changes: dict = {}
        if value is not None:
            changes["value"] = value
        if unit is not None:
            changes["unit"] = unit
        if status is not None:
            changes["status"] = status
        updated = replace(limit, **changes)
        if value is not None or unit is not None:
            validate_limit(updated.limit_type, updated.value, updated.unit)
        updated = risk_limit_repo.update_limit(self.conn, updated)
        logger.info("Risk limit updated: %s fields=%s", limit_id, sorted(changes))
        self._audit(
            updated,
            "RISK_LIMIT_UPDATED",
            fields=sorted(changes),
            value=updated.value,
            unit=updated.unit.value,
        )
        return updated

    def deactivate(self, limit_id: str, user_id: str) -> RiskLimit:
        return self.update(limit_id, user_id, status=LimitStatus.INACTIVE)

    def delete(self, limit_id: str, user_id: str) -> None:
        limit = risk_limit_repo.get_limit(self.conn, limit_id, user_id)
        risk_limit_repo.delete_limit(self.conn, limit.id)
        logger.info("Risk limit deleted: %s (%s)", limit_id, limit.limit_type)
        self._audit(limit, "RISK_LIMIT_DELETED")

    def list_limits(
        self,
        user_id: str,
        limit_type: LimitType | None = None,
        status: LimitStatus | None = None,
    ) -> list[RiskLimit]:
        return risk_limit_repo.list_limits(self.conn, user_id, limit_type, status)

    def violations(
        self,
        user_id: str,
        start: str | None = None,
        end: str | None = None,
        check: str | None = None,
        limit: int = 20,
    ) -> list[dict]:
        """Recorded RISK_VIOLATION events, newest first."""
        rows = audit_repo.list_entries(
            self.conn,
            user_id=user_id,
            event=AuditEvent.RISK_VIOLATION.value,
            start=start,
            end=end,
            limit=limit,
        )
        if check is not None:
            rows = [r for r in rows if r["payload"].get("check") == check]
        return rows

    def summary(self, user_id: str) -> dict:
        active = self.list_limits(user_id, status=LimitStatus.ACTIVE)
        since = (utc_now() - timedelta(days=30)).isoformat()
        recent = audit_repo.count_entries(
            self.conn, user_id, AuditEvent.RISK_VIOLATION.value, start=since
        )
        return {
            "active_limits": len(active),
            "limits_by_type": {
                lim.limit_type.value: {"value": lim.value, "unit": lim.unit.value}
                for lim in active
            },
            "recent_violations": recent,
        }

    def _audit(self, limit: RiskLimit, action: str, **extra) -> None:
        self.audit.record(
            AuditEvent.RISK_LIMIT_CHANGED,
            limit.user_id,
            AuditSource.USER,
            {
                "risk_limit_id": limit.id,
                "action": action,
                "limit_type": limit.limit_type.value,
                **extra,
            },
        )
