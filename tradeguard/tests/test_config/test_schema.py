"""Tests for config schema validation."""

import pytest
from pydantic import ValidationError

from tradeguard.config.schema import (
    Backend,
    CacheConfig,
    EngineConfig,
    ExecutionConfig,
    QueueConfig,
    RiskConfig,
)


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.risk.circuit_breaker_threshold == 5
        assert config.risk.circuit_breaker_window_seconds == 300
        assert config.kill_switch.cache_ttl_seconds == 60
        assert config.execution.poll_interval_seconds == 5.0
        assert config.execution.max_poll_attempts == 60
        assert config.audit.retention_days == 90

    def test_extra_fields_rejected(self):
        with pytest.raises(ValidationError, match="Extra inputs are not permitted"):
            EngineConfig(unknown_field="bad")

    def test_nested_extra_fields_rejected(self):
        with pytest.raises(ValidationError, match="Extra inputs are not permitted"):
            RiskConfig(circuit_breaker_threshold=5, bogus=True)


class TestRiskConfig:
    def test_threshold_must_be_positive(self):
        with pytest.raises(ValidationError):
            RiskConfig(circuit_breaker_threshold=0)

    def test_fallback_must_be_positive(self):
        with pytest.raises(ValidationError):
            RiskConfig(account_value_fallback=0.0)


class TestExecutionConfig:
    def test_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            ExecutionConfig(poll_interval_seconds=0.0)


class TestBackends:
    def test_redis_backend(self):
        q = QueueConfig(backend="redis")
        assert q.backend == Backend.REDIS

    def test_unknown_backend(self):
        with pytest.raises(ValidationError):
            CacheConfig(backend="memcached")

    def test_zero_backoff_allowed(self):
        assert QueueConfig(backoff_seconds=0.0).backoff_seconds == 0.0
