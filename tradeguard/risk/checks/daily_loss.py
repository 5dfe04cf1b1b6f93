"""Daily loss check: blocks once today's realized loss reaches the limit."""

from collections.abc import Iterable

from tradeguard.models.risk import CheckName, LimitUnit, RiskCheckResult, RiskLimit
from tradeguard.models.trading import Order, TransactionType


def realized_pnl(orders: Iterable[Order]) -> float:
    """Simplified realized P&L of filled orders.

    Each fill contributes ``(average_price - price) * filled_quantity``; a BUY
    counts against the total and a SELL towards it. Market orders carry no
    price and contribute their whole fill value.
    """
    total = 0.0
    for order in orders:
        if not order.average_price or not order.filled_quantity:
            continue
        pnl = (order.average_price - (order.price or 0)) * order.filled_quantity
        total += -pnl if order.transaction_type == TransactionType.BUY else pnl
    return total


def check(
    orders: Iterable[Order], account_value: float, limit: RiskLimit | None
) -> RiskCheckResult:
    if limit is None:
        return RiskCheckResult(check=CheckName.DAILY_LOSS, passed=True, critical=True)

    pnl = realized_pnl(orders)
    loss_pct = abs(pnl) * 100 / account_value if account_value > 0 else 0.0
    if limit.unit == LimitUnit.PERCENTAGE:
        max_loss_pct = limit.value
    else:
        max_loss_pct = limit.value * 100 / account_value

    data = {
        "realized_pnl": pnl,
        "loss_percentage": loss_pct,
        "max_loss_percentage": max_loss_pct,
    }
    if pnl < 0 and loss_pct >= max_loss_pct:
        return RiskCheckResult(
            check=CheckName.DAILY_LOSS,
            passed=False,
            critical=True,
            reason=(
                f"Daily loss limit exceeded: {loss_pct:.2f}% "
                f"(limit: {max_loss_pct:.2f}%)"
            ),
            data=data,
        )
    return RiskCheckResult(check=CheckName.DAILY_LOSS, passed=True, critical=True, data=data)
