"""
Forecast Models

These are ephemeral: recomputed from the ledger whenever it changes,
never persisted, never mutated in place (hence frozen).
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from lifeline.models.ledger import Direction


class SafetyLevel(str, Enum):
    """Risk classification of the current daily allowance."""
    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"


class ForecastEvent(BaseModel):
    """
    Something that moved the projected balance on a given day.

    rule_id is absent for events that do not come from a recurring rule.
    """
    model_config = ConfigDict(frozen=True)

    rule_id: Optional[UUID] = None
    name: str
    amount: Decimal
    type: Direction


class ForecastPoint(BaseModel):
    """One day's projected balance and the events that produced it."""
    model_config = ConfigDict(frozen=True)

    date: date
    balance: Decimal = Field(
        ...,
        description="Projected balance, rounded to the cent"
    )
    is_past: bool = Field(
        default=False,
        description="True only for today (the starting point)"
    )
    events: tuple[ForecastEvent, ...] = ()

    @property
    def has_income(self) -> bool:
        return any(event.type is Direction.INCOME for event in self.events)


class SafetyLandingPoint(BaseModel):
    """The lowest projected balance before the next income arrives."""
    model_config = ConfigDict(frozen=True)

    date: date
    balance: Decimal
    days_from_now: int = Field(..., ge=0)
