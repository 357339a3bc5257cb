"""Forecasting and safety engine."""

from lifeline.forecast.averages import (
    DEFAULT_WINDOW_DAYS,
    daily_average_from_sum,
    expense_window,
    recent_daily_average,
)
from lifeline.forecast.recurrence import calculate_next_occurrence, occurs_on_date
from lifeline.forecast.safety import (
    calculate_daily_allowance,
    days_until_payday,
    find_safety_landing_point,
    get_safety_level,
    next_payday,
)
from lifeline.forecast.simulator import DEFAULT_HORIZON_DAYS, generate_forecast

__all__ = [
    "DEFAULT_HORIZON_DAYS",
    "DEFAULT_WINDOW_DAYS",
    "calculate_daily_allowance",
    "calculate_next_occurrence",
    "daily_average_from_sum",
    "days_until_payday",
    "expense_window",
    "find_safety_landing_point",
    "generate_forecast",
    "get_safety_level",
    "next_payday",
    "occurs_on_date",
    "recent_daily_average",
]
