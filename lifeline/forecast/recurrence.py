"""
Recurrence Engine

Decides when a recurring rule fires.

occurs_on_date is authoritative: the simulator uses it for every
projected day. calculate_next_occurrence is advisory only (it feeds
the cached next_occurrence shown to the user).

NOTE: The two deliberately disagree for monthly rules on days a short
month does not have. A rule for the 31st never matches in February,
April, etc., while calculate_next_occurrence clamps to the last day
of the month.
"""

from datetime import date, timedelta
from typing import Optional

from lifeline.dates import DateLike, add_months, as_date, weekday_from_sunday
from lifeline.models.ledger import Frequency, RecurringRule


def occurs_on_date(rule: RecurringRule, target: DateLike) -> bool:
    """
    Check whether a rule fires on a calendar day.

    Time of day is ignored on both the rule's window and the target.
    """
    target_day = as_date(target)
    start = as_date(rule.start_date)

    if target_day < start:
        return False
    if rule.end_date is not None and target_day > as_date(rule.end_date):
        return False

    if rule.frequency is Frequency.DAILY:
        return True
    if rule.frequency is Frequency.WEEKLY:
        return weekday_from_sunday(target_day) == rule.day_of_week
    if rule.frequency is Frequency.MONTHLY:
        # No clamping here; see module docstring
        return target_day.day == rule.day_of_month
    if rule.frequency is Frequency.YEARLY:
        return (target_day.month, target_day.day) == (start.month, start.day)
    if rule.frequency is Frequency.CUSTOM:
        interval = rule.custom_days or 1
        return (target_day - start).days % interval == 0

    return False


def calculate_next_occurrence(
    rule: RecurringRule,
    from_date: Optional[DateLike] = None,
) -> date:
    """
    Next date strictly after from_date where the rule's pattern lands.

    Uses simple calendar arithmetic relative to from_date:
    - daily: the next day
    - weekly: the next day with the rule's weekday (1-7 days ahead)
    - monthly: one month ahead, day clamped to that month's length
    - yearly: one year ahead (Feb 29 becomes Feb 28)
    - custom: custom_days ahead
    """
    anchor = as_date(from_date) if from_date is not None else date.today()

    if rule.frequency is Frequency.DAILY:
        return anchor + timedelta(days=1)
    if rule.frequency is Frequency.WEEKLY:
        target_weekday = rule.day_of_week if rule.day_of_week is not None else 0
        days_ahead = (target_weekday - weekday_from_sunday(anchor)) % 7 or 7
        return anchor + timedelta(days=days_ahead)
    if rule.frequency is Frequency.MONTHLY:
        return add_months(anchor, 1, rule.day_of_month or 1)
    if rule.frequency is Frequency.YEARLY:
        return add_months(anchor, 12)
    if rule.frequency is Frequency.CUSTOM:
        return anchor + timedelta(days=rule.custom_days or 1)

    raise ValueError(f"Unsupported frequency: {rule.frequency}")
