"""Circuit breaker check: consecutive execution failures for the user."""

from tradeguard.models.risk import CheckName, RiskCheckResult


def check(failure_count: int, threshold: int) -> RiskCheckResult:
    data = {"failure_count": failure_count, "threshold": threshold}
    if failure_count >= threshold:
        return RiskCheckResult(
            check=CheckName.CIRCUIT_BREAKER,
            passed=False,
            critical=True,
            reason=f"Circuit breaker triggered: {failure_count} consecutive failures",
            data=data,
        )
    return RiskCheckResult(
        check=CheckName.CIRCUIT_BREAKER, passed=True, critical=True, data=data
    )
