"""
Integration tests for the state coordinator.

The coordinator runs against the in-memory JSON store with a fixed
clock: Wednesday 2025-01-15 12:00, payday on the 15th, so the next
payday is Feb 15 and days_until_payday is 31.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import NOW, make_rule, make_transaction
from lifeline.audit import AuditLogger
from lifeline.coordinator import (
    StateCoordinator,
    compute_snapshot,
    create_coordinator,
    create_storage,
)
from lifeline.config import AppSettings
from lifeline.models import (
    Account,
    AccountPatch,
    AuditEventType,
    BudgetMode,
    Direction,
    RecurringRulePatch,
    SafetyLevel,
    UserSettings,
    UserSettingsPatch,
)
from lifeline.services.storage import (
    JsonFileLedgerStorage,
    NotFoundError,
    SQLiteLedgerStorage,
    StorageError,
)


class FlakyStorage(JsonFileLedgerStorage):
    """In-memory store whose transaction writes fail."""

    async def insert_transaction(self, transaction):
        raise StorageError("disk full")


@pytest.fixture
def audit_logger():
    return AuditLogger()


@pytest.fixture
def coordinator(app_settings, audit_logger):
    return StateCoordinator(
        JsonFileLedgerStorage(),
        audit_logger=audit_logger,
        settings=app_settings,
        clock=lambda: NOW,
    )


async def _with_account(coordinator, balance: str) -> Account:
    await coordinator.initialize()
    cash = coordinator.accounts[0]
    await coordinator.delete_account(cash.id)
    account = Account(name="Bank", balance=Decimal(balance))
    await coordinator.add_account(account)
    return account


class TestInitialize:
    """Tests for the first load."""

    @pytest.mark.asyncio
    async def test_empty_ledger(self, coordinator):
        snapshot = await coordinator.initialize()

        assert [a.name for a in coordinator.accounts] == ["现金"]
        assert snapshot.total_balance == Decimal("0")
        assert snapshot.daily_expense_average == Decimal("0")
        assert snapshot.days_until_payday == 31
        assert snapshot.daily_allowance == Decimal("0")
        # Zero average is floored at 100, so an allowance of 0 is danger
        assert snapshot.safety_level is SafetyLevel.DANGER
        assert len(snapshot.forecast) == 91
        assert snapshot.forecast[0].date == date(2025, 1, 15)
        assert snapshot.landing_point.days_from_now == 0

    def test_state_before_initialize(self, coordinator):
        assert not coordinator.is_initialized
        with pytest.raises(RuntimeError):
            coordinator.snapshot()


class TestDerivedValues:
    """Tests for the recomputed home-screen values."""

    @pytest.mark.asyncio
    async def test_transaction_updates_balance_and_average(self, coordinator):
        account = await _with_account(coordinator, "1000")

        await coordinator.add_transaction(
            make_transaction(account.id, "300", occurred_at=NOW - timedelta(days=1))
        )

        assert coordinator.total_balance == Decimal("700")
        assert coordinator.daily_expense_average == Decimal("10")
        assert coordinator.forecast[1].balance == Decimal("690.00")

    @pytest.mark.asyncio
    async def test_aware_transaction_does_not_break_refresh(self, coordinator):
        account = await _with_account(coordinator, "1000")

        await coordinator.add_transaction(make_transaction(
            account.id, "50", occurred_at=datetime(2025, 1, 14, 9, tzinfo=timezone.utc)
        ))
        await coordinator.refresh()

        assert coordinator.total_balance == Decimal("950")
        assert coordinator.transactions[0].occurred_at.tzinfo is None

    @pytest.mark.asyncio
    async def test_fixed_expenses_are_auto_confirmed_expense_rules(self, coordinator):
        account = await _with_account(coordinator, "3200")

        await coordinator.add_recurring_rule(make_rule(account.id, "100", day_of_month=20))
        await coordinator.add_recurring_rule(
            make_rule(account.id, "50", day_of_month=21, auto_confirm=False)
        )
        await coordinator.add_recurring_rule(
            make_rule(account.id, "9000", type=Direction.INCOME, day_of_month=25)
        )

        assert coordinator.fixed_expenses == Decimal("100")
        assert coordinator.daily_allowance == Decimal("100")
        # Allowance 100 against the floored average of 100
        assert coordinator.safety_level is SafetyLevel.WARNING

    @pytest.mark.asyncio
    async def test_forecast_uses_all_rules(self, coordinator):
        account = await _with_account(coordinator, "1000")
        await coordinator.add_recurring_rule(
            make_rule(account.id, "50", day_of_month=16, auto_confirm=False)
        )
        await coordinator.add_recurring_rule(
            make_rule(account.id, "5000", type=Direction.INCOME, day_of_month=20)
        )

        forecast = coordinator.forecast
        assert forecast[1].balance == Decimal("950.00")
        assert forecast[5].has_income
        assert coordinator.landing_point.balance == Decimal("950.00")
        assert coordinator.landing_point.days_from_now == 1

    @pytest.mark.asyncio
    async def test_manual_budget_overrides_allowance(self, coordinator):
        await _with_account(coordinator, "31000")
        await coordinator.update_settings(UserSettingsPatch(
            daily_budget_mode=BudgetMode.MANUAL,
            manual_daily_budget=Decimal("50"),
        ))

        assert coordinator.daily_allowance == Decimal("50")
        assert coordinator.safety_level is SafetyLevel.DANGER

    def test_compute_snapshot_is_pure(self, app_settings):
        account = Account(name="Bank", balance=Decimal("620"))
        args = ([account], [], UserSettings(), Decimal("10"), app_settings, NOW)
        assert compute_snapshot(*args) == compute_snapshot(*args)
        assert compute_snapshot(*args).daily_allowance == Decimal("20")


class TestMutations:
    """Tests for persisted operations."""

    @pytest.mark.asyncio
    async def test_delete_transaction_restores_balance(self, coordinator):
        account = await _with_account(coordinator, "500")
        tx_id = await coordinator.add_transaction(make_transaction(account.id, "120"))

        await coordinator.delete_transaction(tx_id)

        assert coordinator.total_balance == Decimal("500")
        assert coordinator.transactions == []

    @pytest.mark.asyncio
    async def test_update_account_balance_correction(self, coordinator):
        account = await _with_account(coordinator, "500")
        await coordinator.update_account(account.id, AccountPatch(balance=Decimal("42")))
        assert coordinator.total_balance == Decimal("42")

    @pytest.mark.asyncio
    async def test_delete_account_cascades(self, coordinator):
        account = await _with_account(coordinator, "500")
        await coordinator.add_transaction(make_transaction(account.id, "1"))
        await coordinator.add_recurring_rule(make_rule(account.id, "2"))

        await coordinator.delete_account(account.id)

        assert coordinator.accounts == []
        assert coordinator.transactions == []
        assert coordinator.recurring_rules == []

    @pytest.mark.asyncio
    async def test_rule_next_occurrence_is_maintained(self, coordinator):
        account = await _with_account(coordinator, "500")
        rule_id = await coordinator.add_recurring_rule(
            make_rule(account.id, "100", day_of_month=20)
        )
        assert coordinator.recurring_rules[0].next_occurrence == date(2025, 2, 20)

        updated = await coordinator.update_recurring_rule(
            rule_id, RecurringRulePatch(day_of_month=31)
        )
        assert updated.next_occurrence == date(2025, 2, 28)
        assert coordinator.recurring_rules[0].day_of_month == 31

    @pytest.mark.asyncio
    async def test_update_missing_rule(self, coordinator, audit_logger):
        await coordinator.initialize()
        with pytest.raises(NotFoundError):
            await coordinator.update_recurring_rule(uuid4(), RecurringRulePatch(amount=Decimal("1")))
        assert audit_logger.recent_events[0].event_type is AuditEventType.STORAGE_ERROR

    @pytest.mark.asyncio
    async def test_invalid_rule_patch_is_audited(self, coordinator, audit_logger):
        account = await _with_account(coordinator, "500")
        rule_id = await coordinator.add_recurring_rule(make_rule(account.id, "100"))
        before = coordinator.snapshot()
        too_early = RecurringRulePatch(end_date=datetime(2024, 12, 1))

        with pytest.raises(ValueError):
            await coordinator.update_recurring_rule(rule_id, too_early)
        event = audit_logger.recent_events[0]
        assert event.event_type is AuditEventType.VALIDATION_FAILED
        assert event.details["operation"] == "update_rule"

        # Rejected by storage when the advisory date is supplied
        with pytest.raises(ValueError):
            await coordinator.update_recurring_rule(
                rule_id,
                RecurringRulePatch(end_date=datetime(2024, 12, 1), next_occurrence=date(2025, 2, 1)),
            )
        assert audit_logger.recent_events[0].event_type is AuditEventType.VALIDATION_FAILED
        assert coordinator.snapshot() is before
        assert coordinator.recurring_rules[0].end_date is None

    @pytest.mark.asyncio
    async def test_delete_missing_rule(self, coordinator):
        await coordinator.initialize()
        with pytest.raises(NotFoundError):
            await coordinator.delete_recurring_rule(uuid4())

    @pytest.mark.asyncio
    async def test_currency_change_fills_symbol(self, coordinator):
        await coordinator.initialize()
        settings = await coordinator.update_settings(UserSettingsPatch(currency="usd"))

        assert settings.currency == "USD"
        assert settings.currency_symbol == "$"
        assert coordinator.user_settings.currency_symbol == "$"

    @pytest.mark.asyncio
    async def test_explicit_symbol_is_kept(self, coordinator):
        await coordinator.initialize()
        settings = await coordinator.update_settings(
            UserSettingsPatch(currency="HKD", currency_symbol="$")
        )
        assert settings.currency_symbol == "$"


class TestBatchImport:
    """Tests for add_transaction_batch."""

    @pytest.mark.asyncio
    async def test_partial_import(self, coordinator, audit_logger):
        account = await _with_account(coordinator, "1000")
        await coordinator.add_transaction(make_transaction(account.id, "25", description="Taxi"))

        result = await coordinator.add_transaction_batch([
            make_transaction(account.id, "10"),
            make_transaction(account.id, "25", description="Taxi"),
            make_transaction(uuid4(), "5"),
            {"account_id": str(account.id), "amount": "0", "type": "expense"},
            {"account_id": str(account.id), "amount": "100", "type": "income"},
        ])

        assert result.total_count == 5
        assert result.imported_count == 2
        assert result.skipped_count == 3
        assert len(result.transaction_ids) == 2
        assert len(result.errors) == 3
        assert result.errors[0].startswith("Record 2:")
        assert coordinator.total_balance == Decimal("1065")

        imported = [
            e for e in audit_logger.recent_events
            if e.event_type is AuditEventType.TRANSACTIONS_IMPORTED
        ]
        assert imported[0].details["skipped_count"] == 3

    @pytest.mark.asyncio
    async def test_nothing_valid(self, coordinator):
        await coordinator.initialize()
        result = await coordinator.add_transaction_batch([make_transaction(uuid4(), "5")])

        assert result.imported_count == 0
        assert result.transaction_ids == []
        assert not result.success


class TestFailureHandling:
    """A failed write must leave the previous state untouched."""

    @pytest.mark.asyncio
    async def test_failed_write_keeps_snapshot(self, app_settings, audit_logger):
        coordinator = StateCoordinator(
            FlakyStorage(),
            audit_logger=audit_logger,
            settings=app_settings,
            clock=lambda: NOW,
        )
        before = await coordinator.initialize()
        account_id = coordinator.accounts[0].id

        with pytest.raises(StorageError, match="disk full"):
            await coordinator.add_transaction(make_transaction(account_id, "10"))

        assert coordinator.snapshot() is before
        event = audit_logger.recent_events[0]
        assert event.event_type is AuditEventType.STORAGE_ERROR
        assert event.details["operation"] == "insert_transaction"
        assert event.error_message == "disk full"


class TestSimulateExpense:
    """Tests for the what-if forecast."""

    @pytest.mark.asyncio
    async def test_does_not_mutate(self, coordinator):
        await _with_account(coordinator, "1000")
        before = coordinator.snapshot()

        simulated = coordinator.simulate_expense(Decimal("250"))

        assert simulated[0].balance == Decimal("750.00")
        assert len(simulated) == len(before.forecast)
        assert coordinator.snapshot() is before
        assert coordinator.total_balance == Decimal("1000")


class TestComposition:
    """Tests for the factory functions."""

    def test_create_storage_per_backend(self, tmp_path):
        sqlite_settings = AppSettings(
            _env_file=None, storage_backend="sqlite", database_path=str(tmp_path / "a.db")
        )
        json_settings = AppSettings(
            _env_file=None, storage_backend="json", json_store_path=str(tmp_path / "a.json")
        )
        assert isinstance(create_storage(sqlite_settings), SQLiteLedgerStorage)
        assert isinstance(create_storage(json_settings), JsonFileLedgerStorage)

    @pytest.mark.asyncio
    async def test_create_coordinator_with_storage_override(self):
        coordinator = create_coordinator(storage=JsonFileLedgerStorage())
        await coordinator.initialize()
        assert len(coordinator.accounts) == 1
