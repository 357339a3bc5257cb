"""
State Coordinator for Lifeline

This module ties the ledger store to the forecast engine. It owns the
authoritative in-memory snapshot of the ledger and everything derived
from it: total balance, daily allowance, safety level, the 90-day
forecast and the safety landing point.

DESIGN DECISION: Every mutation follows the same flow:
1. Persist through the storage interface
2. Audit the change
3. Re-read everything and recompute all derived values

The new snapshot is built completely before it replaces the old one,
so a failure at any step leaves the previous snapshot in place.

DESIGN DECISION: The coordinator is an explicit object built by
create_coordinator(), not a module-level singleton. Tests build their
own against an in-memory store.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from lifeline.audit import AuditLogger, configure_logging
from lifeline.config import AppSettings, Settings, get_settings
from lifeline.currencies import Number, get_currency_by_code, round_currency, to_decimal
from lifeline.dates import as_date, to_local_naive
from lifeline.forecast import (
    calculate_daily_allowance,
    calculate_next_occurrence,
    daily_average_from_sum,
    days_until_payday,
    expense_window,
    find_safety_landing_point,
    generate_forecast,
    get_safety_level,
)
from lifeline.models.forecast import ForecastPoint, SafetyLandingPoint, SafetyLevel
from lifeline.models.imports import ImportResult
from lifeline.models.ledger import (
    Account,
    AccountPatch,
    BudgetMode,
    Direction,
    RecurringRule,
    RecurringRulePatch,
    Transaction,
    UserSettings,
    UserSettingsPatch,
    apply_patch,
)
from lifeline.services.storage import (
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    JsonFileLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    SQLiteLedgerStorage,
    StorageError,
)
from lifeline.validation import TransactionBatchValidator

T = TypeVar("T")


class LedgerSnapshot(BaseModel):
    """The ledger as last read from storage."""
    model_config = ConfigDict(frozen=True)

    accounts: tuple[Account, ...] = ()
    transactions: tuple[Transaction, ...] = ()
    recurring_rules: tuple[RecurringRule, ...] = ()
    user_settings: UserSettings


class DerivedSnapshot(BaseModel):
    """Everything computed from a LedgerSnapshot. Never mutated."""
    model_config = ConfigDict(frozen=True)

    total_balance: Decimal
    daily_expense_average: Decimal
    fixed_expenses: Decimal
    days_until_payday: int
    daily_allowance: Decimal
    safety_level: SafetyLevel
    forecast: tuple[ForecastPoint, ...]
    landing_point: Optional[SafetyLandingPoint] = None
    computed_at: datetime


def compute_snapshot(
    accounts: Sequence[Account],
    rules: Sequence[RecurringRule],
    user_settings: UserSettings,
    daily_expense_average: Decimal,
    app_settings: AppSettings,
    now: datetime,
) -> DerivedSnapshot:
    """
    Derive all home-screen values from the ledger. Pure.

    Fixed expenses are the auto-confirmed expense rules, each counted
    once. The safety level compares against an average floored at
    min_average_daily_expense, so an empty history never divides by zero.
    """
    total_balance = sum((account.balance for account in accounts), Decimal("0"))

    fixed_expenses = sum(
        (
            rule.amount
            for rule in rules
            if rule.type is Direction.EXPENSE and rule.auto_confirm
        ),
        Decimal("0"),
    )

    days = days_until_payday(user_settings.payday_of_month, now)

    if (
        user_settings.daily_budget_mode is BudgetMode.MANUAL
        and user_settings.manual_daily_budget is not None
    ):
        daily_allowance = user_settings.manual_daily_budget
    else:
        daily_allowance = calculate_daily_allowance(total_balance, fixed_expenses, days)

    safety_level = get_safety_level(
        daily_allowance,
        daily_expense_average or app_settings.min_average_daily_expense,
        safe_ratio=app_settings.safe_ratio,
        warning_ratio=app_settings.warning_ratio,
    )

    forecast = generate_forecast(
        total_balance,
        rules,
        daily_expense_average,
        horizon_days=app_settings.forecast_horizon_days,
        today=now.date(),
    )

    return DerivedSnapshot(
        total_balance=total_balance,
        daily_expense_average=daily_expense_average,
        fixed_expenses=fixed_expenses,
        days_until_payday=days,
        daily_allowance=daily_allowance,
        safety_level=safety_level,
        forecast=tuple(forecast),
        landing_point=find_safety_landing_point(forecast),
        computed_at=now,
    )


class StateCoordinator:
    """
    Owns the ledger snapshot and its derived values.

    Callers serialize operations; there is no internal locking.

    Args:
        storage: Ledger storage backend
        audit_logger: Where changes and failures are logged
        settings: Forecast and threshold configuration
        clock: Returns "now"; replaced in tests
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = settings or get_settings().app
        self._clock = clock or datetime.now
        self._ledger: Optional[LedgerSnapshot] = None
        self._derived: Optional[DerivedSnapshot] = None

    # -------------------------------------------------------------------------
    # Snapshot access
    # -------------------------------------------------------------------------

    def _require_state(self) -> tuple[LedgerSnapshot, DerivedSnapshot]:
        if self._ledger is None or self._derived is None:
            raise RuntimeError("Coordinator not initialized; await initialize() first")
        return self._ledger, self._derived

    @property
    def is_initialized(self) -> bool:
        return self._derived is not None

    @property
    def accounts(self) -> list[Account]:
        return list(self._require_state()[0].accounts)

    @property
    def transactions(self) -> list[Transaction]:
        return list(self._require_state()[0].transactions)

    @property
    def recurring_rules(self) -> list[RecurringRule]:
        return list(self._require_state()[0].recurring_rules)

    @property
    def user_settings(self) -> UserSettings:
        return self._require_state()[0].user_settings

    def snapshot(self) -> DerivedSnapshot:
        return self._require_state()[1]

    @property
    def total_balance(self) -> Decimal:
        return self.snapshot().total_balance

    @property
    def daily_expense_average(self) -> Decimal:
        return self.snapshot().daily_expense_average

    @property
    def fixed_expenses(self) -> Decimal:
        return self.snapshot().fixed_expenses

    @property
    def days_until_payday(self) -> int:
        return self.snapshot().days_until_payday

    @property
    def daily_allowance(self) -> Decimal:
        return self.snapshot().daily_allowance

    @property
    def safety_level(self) -> SafetyLevel:
        return self.snapshot().safety_level

    @property
    def forecast(self) -> list[ForecastPoint]:
        return list(self.snapshot().forecast)

    @property
    def landing_point(self) -> Optional[SafetyLandingPoint]:
        return self.snapshot().landing_point

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def _persist(self, operation: str, call: Awaitable[T]) -> T:
        """Await a storage call, auditing and re-raising any failure."""
        try:
            return await call
        except StorageError as e:
            await self._audit_logger.log_storage_error(operation, str(e))
            raise
        except ValueError as e:
            # Includes pydantic ValidationError from re-validating a patch
            await self._audit_logger.log_validation_failed(operation, str(e))
            raise

    async def initialize(self) -> DerivedSnapshot:
        """Prepare storage (seeding defaults if empty) and load the snapshot."""
        await self._persist("initialize", self._storage.initialize())
        return await self.refresh()

    async def refresh(self) -> DerivedSnapshot:
        """
        Re-read the whole ledger and recompute every derived value.

        The current state is only replaced once everything succeeded.
        """
        now = to_local_naive(self._clock())
        window = self._settings.average_window_days
        start, end = expense_window(window, now)

        accounts = await self._persist("list_accounts", self._storage.list_accounts())
        transactions = await self._persist(
            "list_transactions", self._storage.list_transactions()
        )
        rules = await self._persist(
            "list_recurring_rules", self._storage.list_recurring_rules()
        )
        user_settings = await self._persist("get_settings", self._storage.get_settings())
        expense_sum = await self._persist(
            "recent_expense_sum", self._storage.recent_expense_sum(start, end)
        )

        ledger = LedgerSnapshot(
            accounts=tuple(accounts),
            transactions=tuple(transactions),
            recurring_rules=tuple(rules),
            user_settings=user_settings,
        )
        derived = compute_snapshot(
            accounts,
            rules,
            user_settings,
            daily_average_from_sum(expense_sum, window),
            self._settings,
            now,
        )

        self._ledger, self._derived = ledger, derived

        await self._audit_logger.log_snapshot_recomputed(
            total_balance=round_currency(derived.total_balance),
            daily_allowance=round_currency(derived.daily_allowance),
            safety_level=derived.safety_level.value,
            days_until_payday=derived.days_until_payday,
        )
        return derived

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def add_account(self, account: Account) -> UUID:
        account_id = await self._persist("insert_account", self._storage.insert_account(account))
        await self._audit_logger.log_account_created(account_id, account.name, account.type.value)
        await self.refresh()
        return account_id

    async def update_account(self, account_id: UUID, patch: AccountPatch) -> Account:
        account = await self._persist(
            "update_account", self._storage.update_account(account_id, patch)
        )
        await self._audit_logger.log_account_updated(account_id, patch.model_fields_set)
        await self.refresh()
        return account

    async def delete_account(self, account_id: UUID) -> None:
        """Delete an account along with its transactions and rules."""
        await self._persist("delete_account", self._storage.delete_account(account_id))
        await self._audit_logger.log_account_deleted(account_id)
        await self.refresh()

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def add_transaction(self, transaction: Transaction) -> UUID:
        """Record a transaction; its account's balance moves with it."""
        transaction_id = await self._persist(
            "insert_transaction", self._storage.insert_transaction(transaction)
        )
        await self._audit_logger.log_transaction_added(
            transaction_id=transaction_id,
            direction=transaction.type.value,
            amount=transaction.amount,
            source=transaction.source.value,
        )
        await self.refresh()
        return transaction_id

    async def add_transaction_batch(
        self,
        records: Sequence[Any],
    ) -> ImportResult:
        """
        Import many transactions at once.

        Records are Transactions or plain mappings. Invalid records,
        records for unknown accounts and exact duplicates are skipped
        and reported; the rest are inserted in one atomic step.
        """
        accounts = await self._persist("list_accounts", self._storage.list_accounts())
        existing = await self._persist("list_transactions", self._storage.list_transactions())

        validator = TransactionBatchValidator(accounts, existing)
        valid, issues = validator.validate(records)

        transaction_ids: list[UUID] = []
        if valid:
            transaction_ids = await self._persist(
                "insert_transactions", self._storage.insert_transactions(valid)
            )

        skipped_indexes = {issue.index for issue in issues}
        result = ImportResult(
            total_count=len(records),
            imported_count=len(transaction_ids),
            skipped_count=len(skipped_indexes),
            transaction_ids=transaction_ids,
            issues=issues,
        )

        await self._audit_logger.log_transactions_imported(
            total_count=result.total_count,
            imported_count=result.imported_count,
            skipped_count=result.skipped_count,
        )
        await self.refresh()
        return result

    async def delete_transaction(self, transaction_id: UUID) -> None:
        """Delete a transaction, reversing exactly its own balance effect."""
        await self._persist(
            "delete_transaction", self._storage.delete_transaction(transaction_id)
        )
        await self._audit_logger.log_transaction_deleted(transaction_id)
        await self.refresh()

    # -------------------------------------------------------------------------
    # Recurring rules
    # -------------------------------------------------------------------------

    def _today(self) -> date:
        return as_date(to_local_naive(self._clock()))

    async def add_recurring_rule(self, rule: RecurringRule) -> UUID:
        rule = rule.model_copy(
            update={"next_occurrence": calculate_next_occurrence(rule, self._today())}
        )
        rule_id = await self._persist("insert_rule", self._storage.insert_rule(rule))
        await self._audit_logger.log_rule_added(rule_id, rule.name, rule.frequency.value)
        await self.refresh()
        return rule_id

    async def update_recurring_rule(
        self,
        rule_id: UUID,
        patch: RecurringRulePatch,
    ) -> RecurringRule:
        """Apply a partial update; the advisory next occurrence is recalculated."""
        rules = await self._persist(
            "list_recurring_rules", self._storage.list_recurring_rules()
        )
        current = next((rule for rule in rules if rule.id == rule_id), None)
        if current is None:
            error = NotFoundError(f"Recurring rule not found: {rule_id}")
            await self._audit_logger.log_storage_error("update_rule", str(error))
            raise error

        full_patch = patch
        if "next_occurrence" not in patch.model_fields_set:
            try:
                preview = apply_patch(current, patch)
            except ValueError as e:
                await self._audit_logger.log_validation_failed("update_rule", str(e))
                raise
            full_patch = RecurringRulePatch(
                **patch.model_dump(exclude_unset=True),
                next_occurrence=calculate_next_occurrence(preview, self._today()),
            )

        rule = await self._persist("update_rule", self._storage.update_rule(rule_id, full_patch))
        await self._audit_logger.log_rule_updated(rule_id, patch.model_fields_set)
        await self.refresh()
        return rule

    async def delete_recurring_rule(self, rule_id: UUID) -> None:
        await self._persist("delete_rule", self._storage.delete_rule(rule_id))
        await self._audit_logger.log_rule_deleted(rule_id)
        await self.refresh()

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    async def update_settings(self, patch: UserSettingsPatch) -> UserSettings:
        """
        Apply a partial settings update.

        Changing the currency without naming a symbol picks the
        currency's own symbol.
        """
        fields = patch.model_fields_set
        if "currency" in fields and "currency_symbol" not in fields and patch.currency:
            patch = UserSettingsPatch(
                **patch.model_dump(exclude_unset=True),
                currency_symbol=get_currency_by_code(patch.currency).symbol,
            )

        user_settings = await self._persist(
            "update_settings", self._storage.update_settings(patch)
        )
        await self._audit_logger.log_settings_updated(patch.model_fields_set)
        await self.refresh()
        return user_settings

    # -------------------------------------------------------------------------
    # What-if
    # -------------------------------------------------------------------------

    def simulate_expense(self, amount: Number) -> list[ForecastPoint]:
        """
        Forecast as if amount were spent today. Changes nothing.
        """
        ledger, derived = self._require_state()
        return generate_forecast(
            derived.total_balance - to_decimal(amount),
            ledger.recurring_rules,
            derived.daily_expense_average,
            horizon_days=self._settings.forecast_horizon_days,
            today=derived.computed_at.date(),
        )


def create_storage(
    app_settings: AppSettings,
    settings: Optional[Settings] = None,
) -> LedgerStorageInterface:
    """Build the storage backend named by app_settings.storage_backend."""
    if app_settings.storage_backend == "sqlite":
        return SQLiteLedgerStorage(app_settings.database_path)
    if app_settings.storage_backend == "json":
        return JsonFileLedgerStorage(app_settings.json_store_path)
    if app_settings.storage_backend == "google_sheets":
        sheets_settings = (settings or get_settings()).google_sheets
        return GoogleSheetsLedgerStorage(GoogleSheetsClient(sheets_settings))
    raise ValueError(f"Unknown storage backend: {app_settings.storage_backend}")


def create_coordinator(
    settings: Optional[Settings] = None,
    storage: Optional[LedgerStorageInterface] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> StateCoordinator:
    """
    Factory function to create the application's coordinator.

    Args:
        settings: Root settings (defaults to the cached environment settings)
        storage: Storage override; built from settings when None

    Returns:
        An uninitialized StateCoordinator; await initialize() before use
    """
    settings = settings or get_settings()
    app_settings = settings.app
    configure_logging(app_settings.effective_log_level)

    return StateCoordinator(
        storage=storage or create_storage(app_settings, settings),
        audit_logger=audit_logger or AuditLogger(),
        settings=app_settings,
    )
