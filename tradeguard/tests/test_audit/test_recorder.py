"""Tests for audit entry construction, recording, and persistence."""

import logging

from tradeguard.audit.recorder import (
    AuditEvent,
    AuditRecorder,
    AuditSink,
    AuditSource,
    build_entry,
    configure_audit_log,
    payload_hash,
)
from tradeguard.queue.jobs import PRIORITY_AUDIT, Job
from tradeguard.runtime.background import BackgroundTasks
from tradeguard.storage import audit_repo


class TestPayloadHash:
    def test_key_order_irrelevant(self):
        assert payload_hash({"a": 1, "b": 2}) == payload_hash({"b": 2, "a": 1})

    def test_value_change_changes_hash(self):
        assert payload_hash({"a": 1}) != payload_hash({"a": 2})

    def test_entry_carries_hash(self):
        entry = build_entry(AuditEvent.ORDER_PLACED, "user-1", AuditSource.USER, {"x": 1})
        assert entry["event"] == "ORDER_PLACED"
        assert entry["source"] == "USER"
        assert entry["payload_hash"] == payload_hash({"x": 1})
        assert entry["timestamp"]


class TestAuditRecorder:
    async def test_record_enqueues_on_audit_queue(self, queue):
        tasks = BackgroundTasks()
        AuditRecorder(queue, tasks).record(
            AuditEvent.TRADE_INTENT_CREATED, "user-1", AuditSource.USER, {"id": "i"}
        )
        await tasks.join()
        (job,) = queue.named("audit")
        assert job.queue == "audit"
        assert job.priority == PRIORITY_AUDIT
        assert job.payload["event"] == "TRADE_INTENT_CREATED"

    async def test_enqueue_failure_is_swallowed(self, caplog):
        class BrokenQueue:
            async def enqueue(self, *args, **kwargs):
                raise ConnectionError("redis gone")

        tasks = BackgroundTasks()
        with caplog.at_level(logging.ERROR):
            AuditRecorder(BrokenQueue(), tasks).record(
                AuditEvent.ORDER_FAILED, "user-1", AuditSource.SYSTEM, {}
            )
            await tasks.join()
        assert "Failed to enqueue audit event ORDER_FAILED" in caplog.text


class TestAuditSink:
    async def test_writes_row(self, conn):
        entry = build_entry(
            AuditEvent.RISK_VIOLATION,
            "user-1",
            AuditSource.RISK_ENGINE,
            {"check": "DAILY_LOSS"},
            result="FAILURE",
        )
        await AuditSink(conn)(Job(queue="audit", name="audit", payload=entry))
        (row,) = audit_repo.list_entries(conn, user_id="user-1")
        assert row["event"] == "RISK_VIOLATION"
        assert row["result"] == "FAILURE"
        assert row["payload"] == {"check": "DAILY_LOSS"}
        assert row["payload_hash"] == entry["payload_hash"]


class TestConfigureAuditLog:
    def test_writes_json_lines(self, tmp_path):
        handler = configure_audit_log(tmp_path / "audit", retention_days=7)
        try:
            assert handler.backupCount == 7
            logging.getLogger("tradeguard.audit").info('{"event": "X"}')
            handler.flush()
            assert '{"event": "X"}' in (tmp_path / "audit" / "audit.log").read_text()
        finally:
            logger = logging.getLogger("tradeguard.audit")
            logger.removeHandler(handler)
            logger.propagate = True
            handler.close()
