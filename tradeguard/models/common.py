"""Common types and helpers shared across models."""

import uuid
from datetime import UTC, datetime
from typing import TypeAlias

UserId: TypeAlias = str


def utc_now() -> datetime:
    return datetime.now(UTC)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def start_of_day_iso(now: datetime | None = None) -> str:
    """Midnight UTC of the given (or current) day, ISO formatted."""
    now = now or utc_now()
    return now.replace(hour=0, minute=0, second=0, microsecond=0).isoformat()
