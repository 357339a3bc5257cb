"""
Trailing daily expense average.

The average smooths unplanned day-to-day spending into the forecast.
It divides by the window length, not by the number of days that had
spending, so quiet days pull the average down.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from lifeline.currencies import Number, to_decimal
from lifeline.models.ledger import Direction, Transaction

DEFAULT_WINDOW_DAYS = 30


def expense_window(window_days: int, now: datetime) -> tuple[datetime, datetime]:
    """The inclusive [start, end] range covered by a trailing window."""
    return now - timedelta(days=window_days), now


def daily_average_from_sum(total: Number, window_days: int) -> Decimal:
    """Spread an expense total over the window (window clamped to >= 1 day)."""
    total = to_decimal(total)
    if not total:
        return Decimal("0")
    return total / max(int(window_days), 1)


def recent_daily_average(
    transactions: Iterable[Transaction],
    window_days: int = DEFAULT_WINDOW_DAYS,
    now: Optional[datetime] = None,
) -> Decimal:
    """
    Average daily expense over the trailing window ending at now.

    Only expense transactions with occurred_at in [now - window_days, now]
    count. Returns 0 when none qualify.
    """
    now = now or datetime.now()
    start, end = expense_window(window_days, now)

    total = sum(
        (
            tx.amount
            for tx in transactions
            if tx.type is Direction.EXPENSE and start <= tx.occurred_at <= end
        ),
        Decimal("0"),
    )
    return daily_average_from_sum(total, window_days)
