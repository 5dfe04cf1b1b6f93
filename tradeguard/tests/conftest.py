"""Shared test fixtures."""

import sqlite3
from pathlib import Path

import pytest
import yaml

from tradeguard.cache.memory import MemoryCache
from tradeguard.config.schema import EngineConfig, QueueConfig
from tradeguard.pipeline.orchestrator import Orchestrator
from tradeguard.storage.database import connect, run_migrations
from tradeguard.tests.helpers import (
    FakeBroker,
    FakeSessions,
    ManualClock,
    RecordingQueue,
    instant_sleep,
)


@pytest.fixture
def conn(tmp_path: Path) -> sqlite3.Connection:
    """Temporary migrated database."""
    c = connect(tmp_path / "test.db")
    run_migrations(c)
    yield c
    c.close()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def cache(clock: ManualClock) -> MemoryCache:
    return MemoryCache(clock=clock)


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def sessions(broker: FakeBroker) -> FakeSessions:
    return FakeSessions(broker)


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(queue=QueueConfig(backoff_seconds=0.0))


@pytest.fixture
def orchestrator(config, conn, queue, cache, sessions) -> Orchestrator:
    return Orchestrator(config, conn, queue, cache, sessions, sleep=instant_sleep)


@pytest.fixture
def config_yaml_path(tmp_path: Path) -> Path:
    """Write a minimal valid config YAML and return its path."""
    data = {
        "risk": {"circuit_breaker_threshold": 3},
        "execution": {"poll_interval_seconds": 2.0},
    }
    path = tmp_path / "test_config.yaml"
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path
