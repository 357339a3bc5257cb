"""
Safety Analyzer

Turns the forecast and the current position into the numbers shown
on the home screen:
- days until the next payday
- the daily allowance (what can be spent per day until payday)
- a safety level comparing that allowance with usual spending
- the safety landing point (worst balance before the next income)

Division by zero is prevented structurally: callers floor the
average expense, and a payday of today returns the free balance.
"""

import math
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence

from lifeline.currencies import Number, to_decimal
from lifeline.dates import SECONDS_PER_DAY, add_months, days_in_month, start_of_day
from lifeline.models.forecast import ForecastPoint, SafetyLandingPoint, SafetyLevel

SAFE_RATIO = Decimal("1.2")
WARNING_RATIO = Decimal("0.8")


def next_payday(payday_of_month: int, today: date) -> date:
    """
    The next payday strictly after today.

    The payday is clamped to the month's length (payday 31 lands on
    Apr 30). If this month's payday is today or already passed, the
    next month's is used; December rolls over into January.

    Payday 31 on Apr 30 gives May 31. A day past the month's end never
    rolls over into the following month (Apr 31 is not read as May 1).
    """
    payday = min(max(int(payday_of_month), 1), 31)
    this_month = min(payday, days_in_month(today.year, today.month))

    if today.day < this_month:
        return today.replace(day=this_month)
    return add_months(today.replace(day=1), 1, payday)


def days_until_payday(payday_of_month: int, now: Optional[datetime] = None) -> int:
    """
    Whole days (rounded up) from now until midnight of the next payday.

    Always at least 1.
    """
    now = now or datetime.now()
    target = start_of_day(next_payday(payday_of_month, now.date()), tzinfo=now.tzinfo)
    remaining = (target - now).total_seconds() / SECONDS_PER_DAY
    return max(1, math.ceil(remaining))


def calculate_daily_allowance(
    current_balance: Number,
    fixed_expenses_until_payday: Number,
    days_until_payday: int,
) -> Decimal:
    """
    Discretionary amount that can be spent per day until payday.

    If payday is today (or overdue) the whole free balance is returned,
    unmodified. Otherwise the free balance is spread over the remaining
    days and never goes below zero.
    """
    free_balance = to_decimal(current_balance) - to_decimal(fixed_expenses_until_payday)
    if days_until_payday <= 0:
        return free_balance
    return max(Decimal("0"), free_balance / days_until_payday)


def get_safety_level(
    daily_allowance: Number,
    average_daily_expense: Number,
    safe_ratio: Number = SAFE_RATIO,
    warning_ratio: Number = WARNING_RATIO,
) -> SafetyLevel:
    """
    Classify the allowance against usual daily spending.

    ratio >= 1.2 is safe, ratio >= 0.8 is a warning, anything lower is danger.

    Raises:
        ValueError: If average_daily_expense is not positive. Callers
                    apply a floor before classifying.
    """
    average = to_decimal(average_daily_expense)
    if average <= 0:
        raise ValueError("average_daily_expense must be positive")

    ratio = to_decimal(daily_allowance) / average
    if ratio >= to_decimal(safe_ratio):
        return SafetyLevel.SAFE
    if ratio >= to_decimal(warning_ratio):
        return SafetyLevel.WARNING
    return SafetyLevel.DANGER


def find_safety_landing_point(
    forecast: Sequence[ForecastPoint],
) -> Optional[SafetyLandingPoint]:
    """
    The lowest projected balance before the next income event.

    Points from the first day carrying income onwards are ignored.
    Without any income in the forecast the whole forecast is scanned.
    The earliest point wins ties.

    Returns None if no point precedes the first income.
    """
    boundary = next(
        (index for index, point in enumerate(forecast) if point.has_income),
        len(forecast),
    )

    lowest_index: Optional[int] = None
    for index in range(boundary):
        if lowest_index is None or forecast[index].balance < forecast[lowest_index].balance:
            lowest_index = index

    if lowest_index is None:
        return None

    lowest = forecast[lowest_index]
    return SafetyLandingPoint(
        date=lowest.date,
        balance=lowest.balance,
        days_from_now=lowest_index,
    )
