"""
Ledger Data Models for Lifeline

These models define the plain data the forecasting engine consumes:
accounts, transactions, recurring rules and the user's settings.

DESIGN DECISION: Money is always Decimal. Balances are summed and
rounded at the cent, and binary floats drift.

DESIGN DECISION: Partial updates go through typed patch models.
Only the fields a caller explicitly sets are merged, one by one,
and the result is validated again so clamping rules always hold.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, TypeVar
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from lifeline.dates import as_date, to_local_naive, weekday_from_sunday


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Kinds of places money is held."""
    CASH = "cash"
    BANK = "bank"
    CREDIT = "credit"
    WECHAT = "wechat"
    ALIPAY = "alipay"


class Direction(str, Enum):
    """Whether money flows in or out."""
    INCOME = "income"
    EXPENSE = "expense"


class TransactionSource(str, Enum):
    """
    Where a transaction came from.

    The core treats every source the same way; the tag is kept
    for display and debugging only.
    """
    MANUAL = "manual"
    NOTIFICATION = "notification"
    SMS = "sms"
    IMPORT = "import"


class Frequency(str, Enum):
    """Recurrence patterns supported by recurring rules."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class BudgetMode(str, Enum):
    """How the daily allowance is determined."""
    AUTO = "auto"      # Computed from balance, fixed expenses and payday
    MANUAL = "manual"  # User-provided fixed daily budget


class Locale(str, Enum):
    ZH = "zh"
    EN = "en"


# =============================================================================
# CORE LEDGER MODELS
# =============================================================================

class Account(BaseModel):
    """
    A place where money is held.

    The balance is only changed by adding or deleting transactions
    (handled atomically by storage), or by an explicit correction
    through AccountPatch.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique account ID"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name"
    )
    type: AccountType = Field(
        default=AccountType.CASH,
        description="Account type"
    )
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Current balance (signed)"
    )
    currency: str = Field(
        default="CNY",
        min_length=3,
        max_length=3,
        description="ISO currency code"
    )
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator('currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator('created_at', 'updated_at')
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return to_local_naive(v)


class Transaction(BaseModel):
    """
    A single recorded income or expense.

    CRITICAL: Transactions are immutable once created. The amount is
    always strictly positive; the direction decides the sign applied
    to the owning account's balance.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique transaction ID"
    )
    account_id: UUID = Field(
        ...,
        description="Owning account"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Unsigned magnitude"
    )
    type: Direction = Field(
        ...,
        description="Income or expense"
    )
    category: str = Field(
        default="other",
        max_length=50,
    )
    description: str = Field(
        default="",
        max_length=500,
    )
    merchant: Optional[str] = Field(
        default=None,
        max_length=200,
    )
    source: TransactionSource = Field(
        default=TransactionSource.MANUAL,
        description="Provenance tag"
    )
    raw_data: Optional[str] = Field(
        default=None,
        description="Original text the record was parsed from, for debugging"
    )
    occurred_at: datetime = Field(
        default_factory=datetime.now,
        description="When the transaction happened"
    )
    created_at: datetime = Field(
        default_factory=datetime.now,
        description="When the transaction was recorded"
    )

    @field_validator('occurred_at', 'created_at')
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """Stored and compared as naive local time."""
        return to_local_naive(v)

    @property
    def signed_amount(self) -> Decimal:
        """Effect of this transaction on its account's balance."""
        if self.type is Direction.INCOME:
            return self.amount
        return -self.amount


class RecurringRule(BaseModel):
    """
    A periodic income or expense.

    Exactly one frequency-specific parameter is meaningful per
    frequency: day_of_week for weekly, day_of_month for monthly,
    custom_days for custom. The others are cleared on validation.

    Malformed parameters are clamped rather than rejected, matching
    how the input screens silently correct what the user typed.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID = Field(
        ...,
        description="Account the rule books against"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Unsigned magnitude per occurrence"
    )
    type: Direction
    frequency: Frequency = Field(default=Frequency.MONTHLY)

    # Frequency-specific parameters
    day_of_week: Optional[int] = Field(
        default=None,
        description="0=Sunday .. 6=Saturday (weekly rules)"
    )
    day_of_month: Optional[int] = Field(
        default=None,
        description="1..31 (monthly rules)"
    )
    custom_days: Optional[int] = Field(
        default=None,
        description="Interval in days, at least 1 (custom rules)"
    )

    # Validity window
    start_date: datetime = Field(default_factory=datetime.now)
    end_date: Optional[datetime] = None

    auto_confirm: bool = Field(
        default=True,
        description="Counted as a fixed expense without user review"
    )
    next_occurrence: Optional[date] = Field(
        default=None,
        description="Cached advisory next occurrence"
    )
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator('start_date', 'end_date', 'created_at', 'updated_at')
    @classmethod
    def normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is None:
            return v
        return to_local_naive(v)

    @field_validator('day_of_week')
    @classmethod
    def clamp_day_of_week(cls, v: Optional[int]) -> Optional[int]:
        if v is None:
            return v
        return min(max(v, 0), 6)

    @field_validator('day_of_month')
    @classmethod
    def clamp_day_of_month(cls, v: Optional[int]) -> Optional[int]:
        if v is None:
            return v
        return min(max(v, 1), 31)

    @field_validator('custom_days')
    @classmethod
    def clamp_custom_days(cls, v: Optional[int]) -> Optional[int]:
        if v is None:
            return v
        return max(v, 1)

    @model_validator(mode='after')
    def normalize_frequency_parameters(self) -> 'RecurringRule':
        """Keep only the parameter the frequency uses, defaulting it from start_date."""
        start = as_date(self.start_date)

        if self.end_date is not None and as_date(self.end_date) < start:
            raise ValueError("End date cannot be before start date")

        if self.frequency is Frequency.WEEKLY:
            if self.day_of_week is None:
                self.day_of_week = weekday_from_sunday(start)
        else:
            self.day_of_week = None

        if self.frequency is Frequency.MONTHLY:
            if self.day_of_month is None:
                self.day_of_month = start.day
        else:
            self.day_of_month = None

        if self.frequency is Frequency.CUSTOM:
            if self.custom_days is None:
                self.custom_days = 1
        else:
            self.custom_days = None

        return self


class UserSettings(BaseModel):
    """
    The user's preferences. There is exactly one of these.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    locale: Locale = Locale.ZH
    currency: str = Field(default="CNY", min_length=3, max_length=3)
    currency_symbol: str = Field(default="¥", max_length=5)
    payday_of_month: int = Field(
        default=15,
        description="Day of month income arrives (1..31)"
    )
    daily_budget_mode: BudgetMode = BudgetMode.AUTO
    manual_daily_budget: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Fixed daily budget used in manual mode"
    )

    # Ingestion toggles
    enable_notification_listener: bool = False
    enable_sms_parser: bool = False
    notification_apps: list[str] = Field(
        default_factory=lambda: ["com.tencent.mm", "com.eg.android.AlipayGphone"]
    )

    @field_validator('payday_of_month')
    @classmethod
    def clamp_payday(cls, v: int) -> int:
        return min(max(v, 1), 31)

    @field_validator('currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()


# =============================================================================
# PATCH MODELS - typed partial updates
# =============================================================================

class AccountPatch(BaseModel):
    """Partial update for an Account. Setting balance is an explicit correction."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[AccountType] = None
    balance: Optional[Decimal] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


class RecurringRulePatch(BaseModel):
    """Partial update for a RecurringRule."""

    account_id: Optional[UUID] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    type: Optional[Direction] = None
    frequency: Optional[Frequency] = None
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    custom_days: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    auto_confirm: Optional[bool] = None
    next_occurrence: Optional[date] = None


class UserSettingsPatch(BaseModel):
    """Partial update for UserSettings."""

    locale: Optional[Locale] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    currency_symbol: Optional[str] = Field(default=None, max_length=5)
    payday_of_month: Optional[int] = None
    daily_budget_mode: Optional[BudgetMode] = None
    manual_daily_budget: Optional[Decimal] = Field(default=None, ge=0)
    enable_notification_listener: Optional[bool] = None
    enable_sms_parser: Optional[bool] = None
    notification_apps: Optional[list[str]] = None


ModelT = TypeVar("ModelT", bound=BaseModel)

# Never changed by a patch, even if a patch model were to carry them
PROTECTED_FIELDS = frozenset({"id", "created_at", "updated_at"})


def apply_patch(entity: ModelT, patch: BaseModel) -> ModelT:
    """
    Merge the explicitly-set fields of a patch into an entity.

    Fields the caller never set are left alone. Explicitly setting a
    field to None (e.g. clearing a rule's end_date) is honoured.

    The merged data is validated again, so the returned entity obeys
    the same invariants as a freshly constructed one.

    Raises:
        ValueError: If the patch names a field the entity does not have,
                    or the merged entity fails validation
    """
    entity_fields = type(entity).model_fields
    data = entity.model_dump()

    changed = False
    for field_name in sorted(patch.model_fields_set):
        if field_name in PROTECTED_FIELDS:
            continue
        if field_name not in entity_fields:
            raise ValueError(
                f"{type(entity).__name__} has no field '{field_name}'"
            )
        data[field_name] = getattr(patch, field_name)
        changed = True

    if changed and "updated_at" in entity_fields:
        data["updated_at"] = datetime.now()

    return type(entity).model_validate(data)
