"""System flag and broker credential models."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class FlagType(StrEnum):
    KILL_SWITCH = "KILL_SWITCH"
    MAINTENANCE = "MAINTENANCE"


class CredentialStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class SystemFlag:
    flag_type: FlagType
    enabled: bool = False
    reason: str | None = None
    triggered_by: str | None = None
    triggered_at: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    updated_at: str = ""


@dataclass(frozen=True)
class BrokerCredential:
    id: str
    user_id: str
    api_key: str  # encrypted
    access_token: str | None  # encrypted
    expires_at: str | None
    status: CredentialStatus = CredentialStatus.ACTIVE


@dataclass(frozen=True)
class BrokerPosition:
    symbol: str
    exchange: str
    quantity: int
    product: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class BrokerOrderState:
    status: str
    filled_quantity: int
    average_price: float | None
    status_message: str | None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)
