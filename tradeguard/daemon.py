"""Worker daemon: runs the queue workers until signalled.

Usage:
    python -m tradeguard run --config ops/configs/default.yaml
    python -m tradeguard stop
    python -m tradeguard daemon-status
"""

import asyncio
import json
import logging
import os
import signal
import sys
import time
from datetime import UTC, datetime
from pathlib import Path

from tradeguard.audit.recorder import configure_audit_log
from tradeguard.config.loader import config_hash
from tradeguard.config.schema import EngineConfig
from tradeguard.pipeline.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

STATE_INTERVAL = 30  # seconds between state file writes
PID_DIR = Path("data")
PID_FILE = PID_DIR / "daemon.pid"
STATE_FILE = PID_DIR / "daemon_state.json"
LOG_DIR = Path("logs")
MAX_LOG_FILES = 30


class WorkerDaemon:
    """Hosts the orchestrator's worker pool with PID tracking and signal handling."""

    def __init__(self, config: EngineConfig, db_path: str = "data/tradeguard.db"):
        self.config = config
        self.db_path = db_path
        self._stop_event: asyncio.Event | None = None
        self._orchestrator: Orchestrator | None = None
        self._started_at: str | None = None

    def start(self) -> None:
        self._check_not_already_running()
        self._write_pid()
        self._started_at = datetime.now(UTC).isoformat()
        file_handler = self._attach_run_log()
        audit_handler = configure_audit_log(
            self.config.audit.log_dir, self.config.audit.retention_days
        )

        print(f"🔄 Worker daemon started (pid {os.getpid()})")
        print(f"   Logs: {LOG_DIR}/")
        print("   Stop: python -m tradeguard stop")
        try:
            asyncio.run(self.run())
        except KeyboardInterrupt:
            logger.info("Daemon interrupted by keyboard")
        finally:
            logging.getLogger().removeHandler(file_handler)
            file_handler.close()
            logging.getLogger("tradeguard.audit").removeHandler(audit_handler)
            audit_handler.close()
            self._cleanup()

    async def run(self) -> None:
        self._stop_event = asyncio.Event()
        self._setup_signals()
        self._orchestrator = Orchestrator.from_config(self.config, self.db_path)
        await self._orchestrator.start()
        logger.info(
            "Daemon started: pid=%d db=%s config=%s",
            os.getpid(), self.db_path, config_hash(self.config),
        )
        try:
            while not self._stop_event.is_set():
                self._save_state()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), STATE_INTERVAL)
                except TimeoutError:
                    pass
        finally:
            await self._orchestrator.stop()
            self._save_state()

    def request_stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    def _setup_signals(self) -> None:
        """Handle SIGTERM and SIGINT for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def _stop(signum: int) -> None:
            sig_name = signal.Signals(signum).name
            logger.info("Received %s, shutting down gracefully...", sig_name)
            print(f"\n⏹️  Received {sig_name}, draining workers...")
            self.request_stop()

        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, _stop, signum)

    def _attach_run_log(self) -> logging.Handler:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
        handler = logging.FileHandler(LOG_DIR / f"daemon_{timestamp}.log")
        handler.setLevel(logging.INFO)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logging.getLogger().addHandler(handler)
        self._rotate_logs()
        return handler

    def _rotate_logs(self) -> None:
        """Keep only the most recent run logs."""
        logs = sorted(LOG_DIR.glob("daemon_*.log"))
        if len(logs) > MAX_LOG_FILES:
            for old in logs[: len(logs) - MAX_LOG_FILES]:
                old.unlink(missing_ok=True)

    def _check_not_already_running(self) -> None:
        """Refuse to start next to a live daemon; clear a stale PID file."""
        pid = _read_pid()
        if pid is None:
            PID_FILE.unlink(missing_ok=True)
            return
        try:
            alive = _is_alive(pid)
        except PermissionError:
            print(f"❌ PID file names process {pid}, which cannot be checked.")
            sys.exit(1)
        if alive:
            print(f"❌ Worker daemon already running (pid {pid}). Stop it first:")
            print("   python -m tradeguard stop")
            sys.exit(1)
        logger.info("Removing stale PID file for pid %d", pid)
        PID_FILE.unlink(missing_ok=True)

    def _write_pid(self) -> None:
        PID_DIR.mkdir(parents=True, exist_ok=True)
        PID_FILE.write_text(str(os.getpid()))

    def _save_state(self) -> None:
        """Persist worker stats for status reporting."""
        workers = self._orchestrator.workers if self._orchestrator else None
        state = {
            "pid": os.getpid(),
            "started_at": self._started_at,
            "db_path": self.db_path,
            "queue_backend": self.config.queue.backend.value,
            "config_hash": config_hash(self.config),
            "jobs_processed": workers.processed if workers else 0,
            "jobs_failed": workers.failed if workers else 0,
            "background_tasks": len(self._orchestrator.tasks) if self._orchestrator else 0,
            "last_update": datetime.now(UTC).isoformat(),
        }
        PID_DIR.mkdir(parents=True, exist_ok=True)
        STATE_FILE.write_text(json.dumps(state, indent=2))

    def _cleanup(self) -> None:
        PID_FILE.unlink(missing_ok=True)
        workers = self._orchestrator.workers if self._orchestrator else None
        processed = workers.processed if workers else 0
        failed = workers.failed if workers else 0
        logger.info("Daemon stopped: %d jobs (%d failed)", processed, failed)
        print(f"⏹️  Daemon stopped: {processed} jobs ({failed} failed)")


def _read_pid() -> int | None:
    """PID from the PID file, or None when it is missing or unreadable."""
    try:
        return int(PID_FILE.read_text().strip())
    except (FileNotFoundError, ValueError):
        return None


def _is_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


def stop_daemon(timeout: int = 60) -> int:
    """SIGTERM the daemon and wait for it to drain; SIGKILL after ``timeout`` seconds."""
    if not PID_FILE.exists():
        print("No worker daemon running (no PID file)")
        return 1
    pid = _read_pid()
    if pid is None:
        print("Unreadable PID file, removing it")
        PID_FILE.unlink(missing_ok=True)
        return 1
    if not _is_alive(pid):
        print(f"Worker daemon not running (stale pid {pid}), cleaning up")
        PID_FILE.unlink(missing_ok=True)
        STATE_FILE.unlink(missing_ok=True)
        return 0

    print(f"Stopping worker daemon (pid {pid})...")
    os.kill(pid, signal.SIGTERM)
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        time.sleep(1)
        if not _is_alive(pid):
            PID_FILE.unlink(missing_ok=True)
            print("✅ Worker daemon stopped")
            return 0

    print(f"⚠️  Worker daemon still running after {timeout}s, sending SIGKILL")
    os.kill(pid, signal.SIGKILL)
    PID_FILE.unlink(missing_ok=True)
    return 0


def daemon_status() -> int:
    """Report liveness and worker counters from the last state snapshot."""
    if not STATE_FILE.exists():
        pid = _read_pid()
        print("No worker daemon state found")
        if pid is not None:
            note = "running" if _is_alive(pid) else "stale"
            print(f"  PID file names {pid} ({note})")
        return 1

    state = json.loads(STATE_FILE.read_text())
    try:
        running = _is_alive(int(state["pid"]))
    except (KeyError, TypeError, ValueError):
        running = False
    except PermissionError:
        running = True

    print(f"{'🟢' if running else '🔴'} Worker daemon {'running' if running else 'stopped'}")
    fields = [
        ("PID", "pid"),
        ("Queue backend", "queue_backend"),
        ("Database", "db_path"),
        ("Config hash", "config_hash"),
        ("Started", "started_at"),
        ("Jobs processed", "jobs_processed"),
        ("Jobs failed", "jobs_failed"),
        ("Background tasks", "background_tasks"),
        ("Last update", "last_update"),
    ]
    for label, key in fields:
        print(f"  {label}: {state.get(key, '?')}")
    return 0
