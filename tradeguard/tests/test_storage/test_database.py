"""Tests for connection setup and migrations."""

from pathlib import Path

from tradeguard.storage.database import applied_versions, connect, run_migrations


class TestMigrations:
    def test_creates_tables(self, tmp_path: Path):
        conn = connect(tmp_path / "fresh.db")
        applied = run_migrations(conn)
        assert applied == ["v001_initial"]
        tables = {
            r[0]
            for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        assert {
            "trade_intents",
            "orders",
            "risk_limits",
            "system_flags",
            "broker_credentials",
            "audit_log",
            "schema_versions",
        } <= tables
        conn.close()

    def test_idempotent(self, tmp_path: Path):
        conn = connect(tmp_path / "fresh.db")
        run_migrations(conn)
        assert run_migrations(conn) == []
        conn.close()

    def test_records_versions(self, conn):
        assert applied_versions(conn) == {"v001_initial"}

    def test_creates_parent_directory(self, tmp_path: Path):
        conn = connect(tmp_path / "nested" / "dir" / "db.sqlite")
        assert run_migrations(conn) == ["v001_initial"]
        conn.close()

    def test_kill_switch_seeded_off(self, conn):
        row = conn.execute(
            "SELECT enabled FROM system_flags WHERE flag_type = 'KILL_SWITCH'"
        ).fetchone()
        assert row["enabled"] == 0

    def test_wal_mode(self, conn):
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode == "wal"
