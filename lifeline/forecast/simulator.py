"""
Forecast Simulator

Walks forward one day at a time from today and projects the balance.

For every day after today:
1. Each recurring rule that fires (per occurs_on_date) is applied,
   in input order, and recorded as an event
2. The trailing daily average is subtracted as unplanned spending

Today is the starting point: it records the current balance as-is,
with no events and no average erosion.

The simulation is pure. Same inputs, same output; no I/O.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from lifeline.currencies import Number, round_currency, to_decimal
from lifeline.dates import DateLike, as_date
from lifeline.forecast.recurrence import occurs_on_date
from lifeline.models.forecast import ForecastEvent, ForecastPoint
from lifeline.models.ledger import Direction, RecurringRule

DEFAULT_HORIZON_DAYS = 90


def generate_forecast(
    current_balance: Number,
    rules: Sequence[RecurringRule],
    daily_expense_average: Number,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
    today: Optional[DateLike] = None,
) -> list[ForecastPoint]:
    """
    Project the balance over the next horizon_days days.

    Args:
        current_balance: Balance today
        rules: Recurring rules to apply
        daily_expense_average: Unplanned spend subtracted each future day
        horizon_days: Number of days to project beyond today
        today: Starting day (defaults to the current date)

    Returns:
        horizon_days + 1 points; the first one is today
    """
    start: date = as_date(today) if today is not None else date.today()
    average = to_decimal(daily_expense_average)
    running_balance: Decimal = to_decimal(current_balance)

    forecast = [
        ForecastPoint(
            date=start,
            balance=round_currency(running_balance),
            is_past=True,
        )
    ]

    for offset in range(1, max(horizon_days, 0) + 1):
        day = start + timedelta(days=offset)
        events = []

        for rule in rules:
            if not occurs_on_date(rule, day):
                continue
            events.append(
                ForecastEvent(
                    rule_id=rule.id,
                    name=rule.name,
                    amount=rule.amount,
                    type=rule.type,
                )
            )
            if rule.type is Direction.INCOME:
                running_balance += rule.amount
            else:
                running_balance -= rule.amount

        running_balance -= average

        # Only the recorded value is rounded; the running total keeps full precision
        forecast.append(
            ForecastPoint(
                date=day,
                balance=round_currency(running_balance),
                events=tuple(events),
            )
        )

    return forecast
