"""Global trading halt.

The durable ``system_flags`` row is the source of truth; the cache holds a
short-lived mirror. Any failure to read either is treated as "enabled".
"""

import logging
import sqlite3
from dataclasses import dataclass

from tradeguard.audit.recorder import AuditEvent, AuditRecorder, AuditSource
from tradeguard.errors import KillSwitchActiveError
from tradeguard.execution.unwind import Unwinder, UnwindReport
from tradeguard.models.common import utc_now_iso
from tradeguard.models.system import FlagType, SystemFlag
from tradeguard.storage import flag_repo

logger = logging.getLogger(__name__)

CACHE_KEY = "system:kill_switch"


@dataclass(frozen=True)
class ToggleResult:
    flag: SystemFlag
    changed: bool
    unwind: UnwindReport | None = None


class KillSwitch:
    def __init__(
        self,
        conn: sqlite3.Connection,
        cache,
        audit: AuditRecorder,
        unwinder: Unwinder | None = None,
        cache_ttl_seconds: int = 60,
    ):
        self.conn = conn
        self.cache = cache
        self.audit = audit
        self.unwinder = unwinder
        self.cache_ttl_seconds = cache_ttl_seconds

    async def is_enabled(self) -> bool:
        try:
            cached = await self.cache.get(CACHE_KEY)
            if cached is not None:
                return bool(cached["enabled"])
            flag = flag_repo.get_flag(self.conn, FlagType.KILL_SWITCH)
            enabled = bool(flag and flag.enabled)
            await self.cache.set(CACHE_KEY, {"enabled": enabled}, ttl=self.cache_ttl_seconds)
            return enabled
        except Exception:
            logger.exception("Kill switch state unreadable; treating as enabled")
            return True

    async def enforce(self) -> None:
        if await self.is_enabled():
            raise KillSwitchActiveError()

    def status(self) -> SystemFlag:
        flag = flag_repo.get_flag(self.conn, FlagType.KILL_SWITCH)
        return flag or SystemFlag(flag_type=FlagType.KILL_SWITCH)

    async def enable(
        self, user_id: str, reason: str, *, auto_triggered: bool = False
    ) -> ToggleResult:
        """Turn trading off and unwind exposure. No-op if already on."""
        current = self.status()
        if current.enabled:
            logger.info("Kill switch already enabled (%s); ignoring", current.reason)
            return ToggleResult(flag=current, changed=False)

        logger.warning("Kill switch being enabled by user %s: %s", user_id, reason)
        flag = flag_repo.save_flag(
            self.conn,
            SystemFlag(
                flag_type=FlagType.KILL_SWITCH,
                enabled=True,
                reason=reason,
                triggered_by=user_id,
                triggered_at=utc_now_iso(),
                metadata={"auto_triggered": auto_triggered},
            ),
        )
        await self._mirror(True)
        self.audit.record(
            AuditEvent.KILL_SWITCH_ENABLED,
            user_id,
            AuditSource.KILL_SWITCH if auto_triggered else AuditSource.USER,
            {"reason": reason, "auto_triggered": auto_triggered},
        )

        report = None
        if self.unwinder is not None:
            try:
                report = await self.unwinder.unwind()
                logger.warning("Kill switch unwind finished: %s", report)
            except Exception:
                # Trading is already halted; the toggle still succeeds.
                logger.exception("Kill switch unwind aborted")
        return ToggleResult(flag=flag, changed=True, unwind=report)

    async def auto_trigger(self, user_id: str, reason: str) -> ToggleResult | None:
        """Enable on a critical violation. Errors are logged, never raised."""
        logger.error("Auto-triggering kill switch for user %s: %s", user_id, reason)
        try:
            return await self.enable(user_id, f"AUTO: {reason}", auto_triggered=True)
        except Exception:
            logger.exception("Kill switch auto-trigger failed for user %s", user_id)
            return None

    async def disable(self, user_id: str) -> ToggleResult:
        current = self.status()
        if not current.enabled:
            return ToggleResult(flag=current, changed=False)

        logger.warning("Kill switch being disabled by user %s", user_id)
        flag = flag_repo.save_flag(
            self.conn,
            SystemFlag(
                flag_type=FlagType.KILL_SWITCH,
                enabled=False,
                metadata={"disabled_by": user_id, "disabled_at": utc_now_iso()},
            ),
        )
        await self._mirror(False)
        self.audit.record(
            AuditEvent.KILL_SWITCH_DISABLED,
            user_id,
            AuditSource.USER,
            {"previous_reason": current.reason},
        )
        return ToggleResult(flag=flag, changed=True)

    async def _mirror(self, enabled: bool) -> None:
        """Write through to the cache; on failure drop the entry so reads go to the store."""
        try:
            await self.cache.set(CACHE_KEY, {"enabled": enabled}, ttl=self.cache_ttl_seconds)
        except Exception:
            logger.exception("Kill switch cache write failed")
            try:
                await self.cache.delete(CACHE_KEY)
            except Exception:
                logger.exception("Kill switch cache invalidation failed")
