"""Tests for the average estimator and the forecast simulator."""

from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

from conftest import NOW, make_rule, make_transaction
from lifeline.forecast import (
    daily_average_from_sum,
    generate_forecast,
    recent_daily_average,
)
from lifeline.models.ledger import Direction, Frequency


ACCOUNT = uuid4()
TODAY = date(2025, 1, 15)


class TestRecentDailyAverage:
    """Tests for the trailing expense average."""

    def test_divides_by_window_not_by_active_days(self):
        transactions = [
            make_transaction(ACCOUNT, "300", occurred_at=NOW - timedelta(days=1)),
            make_transaction(ACCOUNT, "300", occurred_at=NOW - timedelta(days=2)),
        ]
        assert recent_daily_average(transactions, 30, NOW) == Decimal("20")

    def test_ignores_income_and_old_expenses(self):
        transactions = [
            make_transaction(ACCOUNT, "900", type=Direction.INCOME),
            make_transaction(ACCOUNT, "900", occurred_at=NOW - timedelta(days=31)),
            make_transaction(ACCOUNT, "90", occurred_at=NOW - timedelta(days=30)),
        ]
        assert recent_daily_average(transactions, 30, NOW) == Decimal("3")

    def test_empty_history_is_zero(self):
        assert recent_daily_average([], 30, NOW) == Decimal("0")

    def test_window_is_clamped(self):
        assert daily_average_from_sum(Decimal("50"), 0) == Decimal("50")


class TestGenerateForecast:
    """Tests for the day-by-day balance projection."""

    def test_length_is_horizon_plus_one(self):
        for horizon in (0, 1, 30, 90):
            assert len(generate_forecast(Decimal("100"), [], Decimal("0"), horizon, TODAY)) == horizon + 1

    def test_negative_horizon_is_today_only(self):
        forecast = generate_forecast(Decimal("100"), [], Decimal("0"), -5, TODAY)
        assert len(forecast) == 1

    def test_today_is_the_unmodified_start(self):
        rule = make_rule(ACCOUNT, "50", frequency=Frequency.DAILY)
        forecast = generate_forecast(Decimal("1000.005"), [rule], Decimal("10"), 5, TODAY)
        today = forecast[0]
        assert today.date == TODAY
        assert today.is_past
        assert today.events == ()
        assert today.balance == Decimal("1000.01")
        assert not any(point.is_past for point in forecast[1:])

    def test_no_rules_erodes_by_average(self):
        forecast = generate_forecast(Decimal("1000"), [], Decimal("10"), 10, TODAY)
        for day, point in enumerate(forecast):
            assert point.balance == Decimal("1000") - 10 * day

    def test_rules_apply_before_average(self):
        salary = make_rule(ACCOUNT, "5000", type=Direction.INCOME, day_of_month=17, name="Salary")
        rent = make_rule(ACCOUNT, "3000", day_of_month=17, name="Rent")
        forecast = generate_forecast(Decimal("100"), [salary, rent], Decimal("10"), 3, TODAY)

        # Jan 16: average only; Jan 17: +5000 -3000 -10
        assert forecast[1].balance == Decimal("90")
        assert forecast[2].balance == Decimal("2080")
        assert [event.name for event in forecast[2].events] == ["Salary", "Rent"]
        assert forecast[2].events[0].rule_id == salary.id

    def test_running_balance_is_not_rounded(self):
        # Three days of 0.333: recorded 99.67, 99.33, 99.00 rather than drifting
        forecast = generate_forecast(Decimal("100"), [], Decimal("0.333"), 3, TODAY)
        assert [p.balance for p in forecast[1:]] == [
            Decimal("99.67"),
            Decimal("99.33"),
            Decimal("99.00"),
        ]

    def test_is_deterministic(self):
        rules = [
            make_rule(ACCOUNT, "12.34", frequency=Frequency.WEEKLY, day_of_week=2),
            make_rule(ACCOUNT, "4000", type=Direction.INCOME, day_of_month=1),
        ]
        first = generate_forecast(Decimal("500"), rules, Decimal("7.5"), 90, TODAY)
        second = generate_forecast(Decimal("500"), rules, Decimal("7.5"), 90, TODAY)
        assert first == second

    def test_accepts_floats(self):
        forecast = generate_forecast(100.1, [], 0.1, 1, datetime(2025, 1, 15, 9, 0))
        assert forecast[1].balance == Decimal("100.00")
