"""Max positions check: live open-position count from the broker."""

from tradeguard.models.risk import CheckName, RiskCheckResult, RiskLimit


def check(open_positions: int | None, limit: RiskLimit | None) -> RiskCheckResult:
    """``open_positions`` is None when the broker could not be asked; that passes."""
    if limit is None or open_positions is None:
        return RiskCheckResult(check=CheckName.MAX_POSITIONS, passed=True)

    max_positions = int(limit.value)
    data = {"open_positions": open_positions, "max_positions": max_positions}
    if open_positions >= max_positions:
        return RiskCheckResult(
            check=CheckName.MAX_POSITIONS,
            passed=False,
            reason=(
                f"Maximum open positions reached: {open_positions} "
                f"(limit: {max_positions})"
            ),
            data=data,
        )
    return RiskCheckResult(check=CheckName.MAX_POSITIONS, passed=True, data=data)
