"""Position size check: intended notional as a share of account value."""

from tradeguard.models.risk import CheckName, LimitUnit, RiskCheckResult, RiskLimit


def check(
    price: float | None, quantity: int, account_value: float, limit: RiskLimit | None
) -> RiskCheckResult:
    if limit is None:
        return RiskCheckResult(check=CheckName.POSITION_SIZE, passed=True)

    position_value = (price or 0) * quantity
    position_pct = position_value * 100 / account_value
    if limit.unit == LimitUnit.PERCENTAGE:
        max_pct = limit.value
    else:
        max_pct = limit.value * 100 / account_value

    data = {
        "position_value": position_value,
        "position_percentage": position_pct,
        "max_percentage": max_pct,
    }
    if position_pct > max_pct:
        return RiskCheckResult(
            check=CheckName.POSITION_SIZE,
            passed=False,
            reason=f"Position size exceeds limit: {position_pct:.2f}% (limit: {max_pct:g}%)",
            data=data,
        )
    return RiskCheckResult(check=CheckName.POSITION_SIZE, passed=True, data=data)
