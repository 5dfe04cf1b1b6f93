"""Pydantic v2 configuration schema with strict validation."""

from enum import StrEnum

from pydantic import BaseModel, Field


class Backend(StrEnum):
    MEMORY = "memory"
    REDIS = "redis"


class RiskConfig(BaseModel):
    model_config = {"extra": "forbid"}

    circuit_breaker_threshold: int = Field(default=5, ge=1)
    circuit_breaker_window_seconds: int = Field(default=300, ge=1)
    account_value_fallback: float = Field(default=100_000.0, gt=0.0)
    account_value_ttl_seconds: int = Field(default=300, ge=1)


class KillSwitchConfig(BaseModel):
    model_config = {"extra": "forbid"}

    cache_ttl_seconds: int = Field(default=60, ge=1)


class ExecutionConfig(BaseModel):
    model_config = {"extra": "forbid"}

    poll_interval_seconds: float = Field(default=5.0, gt=0.0)
    max_poll_attempts: int = Field(default=60, ge=1)


class BrokerConfig(BaseModel):
    model_config = {"extra": "forbid"}

    base_url: str = "https://api.kite.trade"
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    encryption_key_env: str = "TRADEGUARD_ENCRYPTION_KEY"


class QueueConfig(BaseModel):
    model_config = {"extra": "forbid"}

    backend: Backend = Backend.MEMORY
    concurrency: int = Field(default=5, ge=1)
    audit_concurrency: int = Field(default=10, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=5.0, ge=0.0)


class CacheConfig(BaseModel):
    model_config = {"extra": "forbid"}

    backend: Backend = Backend.MEMORY
    redis_url: str = "redis://localhost:6379/0"


class AuditConfig(BaseModel):
    model_config = {"extra": "forbid"}

    log_dir: str = "logs/audit"
    retention_days: int = Field(default=90, ge=1)


class EngineConfig(BaseModel):
    model_config = {"extra": "forbid"}

    risk: RiskConfig = RiskConfig()
    kill_switch: KillSwitchConfig = KillSwitchConfig()
    execution: ExecutionConfig = ExecutionConfig()
    broker: BrokerConfig = BrokerConfig()
    queue: QueueConfig = QueueConfig()
    cache: CacheConfig = CacheConfig()
    audit: AuditConfig = AuditConfig()
