"""Kill switch check: blocks every intent while trading is halted."""

from tradeguard.models.risk import CheckName, RiskCheckResult


def check(enabled: bool) -> RiskCheckResult:
    if enabled:
        return RiskCheckResult(
            check=CheckName.KILL_SWITCH, passed=False, reason="Kill switch is enabled"
        )
    return RiskCheckResult(check=CheckName.KILL_SWITCH, passed=True)
