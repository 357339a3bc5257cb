"""Shared fixtures for Lifeline tests."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

import pytest

from lifeline.config import AppSettings
from lifeline.models.ledger import (
    Direction,
    Frequency,
    RecurringRule,
    Transaction,
)

# Wednesday
NOW = datetime(2025, 1, 15, 12, 0, 0)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def app_settings() -> AppSettings:
    """Defaults, independent of any environment or .env file."""
    return AppSettings(
        _env_file=None,
        storage_backend="json",
        forecast_horizon_days=90,
        average_window_days=30,
    )


def make_rule(
    account_id: UUID,
    amount: str,
    type: Direction = Direction.EXPENSE,
    frequency: Frequency = Frequency.MONTHLY,
    start: datetime = datetime(2025, 1, 1),
    **kwargs,
) -> RecurringRule:
    return RecurringRule(
        account_id=account_id,
        name=kwargs.pop("name", f"{type.value} {amount}"),
        amount=Decimal(amount),
        type=type,
        frequency=frequency,
        start_date=start,
        **kwargs,
    )


def make_transaction(
    account_id: UUID,
    amount: str,
    type: Direction = Direction.EXPENSE,
    occurred_at: datetime = NOW,
    **kwargs,
) -> Transaction:
    return Transaction(
        account_id=account_id,
        amount=Decimal(amount),
        type=type,
        occurred_at=occurred_at,
        **kwargs,
    )
