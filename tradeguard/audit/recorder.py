"""Audit trail: hashed event entries routed through the audit queue.

Recording never blocks or fails the operation that triggered it. The recorder
hands the enqueue to a background task and the sink, running on the audit
workers, writes the row and the JSON log line.
"""

import hashlib
import json
import logging
import sqlite3
from enum import StrEnum
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any

from tradeguard.models.common import utc_now_iso
from tradeguard.queue.jobs import PRIORITY_AUDIT, Job, JobName, QueueName
from tradeguard.runtime.background import BackgroundTasks
from tradeguard.storage import audit_repo

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("tradeguard.audit")


class AuditEvent(StrEnum):
    TRADE_INTENT_CREATED = "TRADE_INTENT_CREATED"
    TRADE_INTENT_APPROVED = "TRADE_INTENT_APPROVED"
    TRADE_INTENT_REJECTED = "TRADE_INTENT_REJECTED"
    ORDER_PLACED = "ORDER_PLACED"
    ORDER_FAILED = "ORDER_FAILED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_STATUS_UPDATED = "ORDER_STATUS_UPDATED"
    RISK_VIOLATION = "RISK_VIOLATION"
    KILL_SWITCH_ENABLED = "KILL_SWITCH_ENABLED"
    KILL_SWITCH_DISABLED = "KILL_SWITCH_DISABLED"
    POSITION_SQUARED_OFF = "POSITION_SQUARED_OFF"
    RISK_LIMIT_CHANGED = "RISK_LIMIT_CHANGED"


class AuditSource(StrEnum):
    USER = "USER"
    SYSTEM = "SYSTEM"
    RISK_ENGINE = "RISK_ENGINE"
    EXECUTION_ENGINE = "EXECUTION_ENGINE"
    KILL_SWITCH = "KILL_SWITCH"


def payload_hash(payload: dict[str, Any]) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def build_entry(
    event: str,
    user_id: str | None,
    source: str,
    payload: dict[str, Any],
    result: str = "SUCCESS",
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "event": str(event),
        "user_id": user_id,
        "source": str(source),
        "payload": payload,
        "payload_hash": payload_hash(payload),
        "result": result,
        "metadata": metadata or {},
        "timestamp": utc_now_iso(),
    }


class AuditRecorder:
    def __init__(self, queue: Any, tasks: BackgroundTasks):
        self.queue = queue
        self.tasks = tasks

    def record(
        self,
        event: AuditEvent,
        user_id: str | None,
        source: AuditSource,
        payload: dict[str, Any],
        result: str = "SUCCESS",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Fire-and-forget. A failed enqueue is logged, never raised."""
        try:
            entry = build_entry(event, user_id, source, payload, result, metadata)
        except (TypeError, ValueError):
            logger.exception("Could not build audit entry for %s", event)
            return
        self.tasks.spawn(self._enqueue(entry), name=f"audit:{event}")

    async def _enqueue(self, entry: dict[str, Any]) -> None:
        try:
            await self.queue.enqueue(
                QueueName.AUDIT, JobName.AUDIT, entry, priority=PRIORITY_AUDIT
            )
        except Exception:
            logger.exception("Failed to enqueue audit event %s", entry["event"])


class AuditSink:
    """Audit-queue processor."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    async def __call__(self, job: Job) -> None:
        entry = job.payload
        audit_repo.insert_entry(self.conn, entry)
        audit_logger.info(json.dumps(entry, sort_keys=True, default=str))


def configure_audit_log(log_dir: str | Path, retention_days: int = 90) -> logging.Handler:
    """Attach a daily-rotating JSON-lines file handler to the audit logger."""
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        path / "audit.log", when="midnight", backupCount=retention_days, utc=True
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)
    audit_logger.setLevel(logging.INFO)
    audit_logger.propagate = False
    return handler
