"""
Storage contract tests.

Every backend must behave the same, so the same tests run against the
JSON document store (in memory and on disk) and SQLite (in memory).
The Google Sheets backend has its own tests against a fake worksheet.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import NOW, make_rule, make_transaction
from lifeline.models.ledger import (
    Account,
    AccountPatch,
    Direction,
    Frequency,
    RecurringRulePatch,
    UserSettingsPatch,
)
from lifeline.services.storage import (
    JsonFileLedgerStorage,
    NotFoundError,
    SQLiteLedgerStorage,
    StorageError,
)


@pytest.fixture(params=["json_memory", "json_file", "sqlite_memory"])
def storage(request, tmp_path):
    if request.param == "json_memory":
        yield JsonFileLedgerStorage()
    elif request.param == "json_file":
        yield JsonFileLedgerStorage(tmp_path / "ledger.json")
    else:
        backend = SQLiteLedgerStorage(":memory:")
        yield backend
        backend.close()


async def _add_account(storage, balance: str = "1000") -> Account:
    account = Account(name="Bank", balance=Decimal(balance))
    await storage.insert_account(account)
    return account


async def _balance(storage, account_id) -> Decimal:
    accounts = await storage.list_accounts()
    return next(a.balance for a in accounts if a.id == account_id)


class TestInitialize:
    """Tests for first-run seeding."""

    @pytest.mark.asyncio
    async def test_seeds_settings_and_cash_account(self, storage):
        await storage.initialize()
        accounts = await storage.list_accounts()
        settings = await storage.get_settings()

        assert len(accounts) == 1
        assert accounts[0].name == "现金"
        assert accounts[0].balance == Decimal("0")
        assert settings.payday_of_month == 15

    @pytest.mark.asyncio
    async def test_is_idempotent(self, storage):
        await storage.initialize()
        await storage.initialize()
        assert len(await storage.list_accounts()) == 1


class TestAccounts:
    """Tests for account CRUD."""

    @pytest.mark.asyncio
    async def test_update_merges_patch(self, storage):
        await storage.initialize()
        account = await _add_account(storage)

        updated = await storage.update_account(account.id, AccountPatch(name="Savings"))
        assert updated.name == "Savings"
        assert updated.balance == Decimal("1000")

        stored = next(a for a in await storage.list_accounts() if a.id == account.id)
        assert stored.name == "Savings"

    @pytest.mark.asyncio
    async def test_update_missing_account(self, storage):
        await storage.initialize()
        with pytest.raises(NotFoundError):
            await storage.update_account(uuid4(), AccountPatch(name="Ghost"))

    @pytest.mark.asyncio
    async def test_delete_cascades(self, storage):
        await storage.initialize()
        account = await _add_account(storage)
        other = await _add_account(storage)
        await storage.insert_transaction(make_transaction(account.id, "10"))
        await storage.insert_transaction(make_transaction(other.id, "20"))
        await storage.insert_rule(make_rule(account.id, "100"))

        await storage.delete_account(account.id)

        assert account.id not in {a.id for a in await storage.list_accounts()}
        assert [t.account_id for t in await storage.list_transactions()] == [other.id]
        assert await storage.list_recurring_rules() == []

    @pytest.mark.asyncio
    async def test_delete_missing_account(self, storage):
        await storage.initialize()
        with pytest.raises(NotFoundError):
            await storage.delete_account(uuid4())


class TestTransactions:
    """Tests for transactions and their balance side-effects."""

    @pytest.mark.asyncio
    async def test_insert_adjusts_balance(self, storage):
        await storage.initialize()
        account = await _add_account(storage)

        await storage.insert_transaction(make_transaction(account.id, "150.25"))
        await storage.insert_transaction(
            make_transaction(account.id, "50", type=Direction.INCOME)
        )

        assert await _balance(storage, account.id) == Decimal("899.75")

    @pytest.mark.asyncio
    async def test_delete_reverses_exactly_its_own_effect(self, storage):
        await storage.initialize()
        account = await _add_account(storage)
        keep = make_transaction(account.id, "30")
        remove = make_transaction(account.id, "70.10")
        await storage.insert_transaction(keep)
        await storage.insert_transaction(remove)

        await storage.delete_transaction(remove.id)

        assert await _balance(storage, account.id) == Decimal("970")
        assert [t.id for t in await storage.list_transactions()] == [keep.id]

    @pytest.mark.asyncio
    async def test_unknown_account_changes_nothing(self, storage):
        await storage.initialize()
        account = await _add_account(storage)
        batch = [
            make_transaction(account.id, "10"),
            make_transaction(uuid4(), "20"),
        ]

        with pytest.raises(NotFoundError):
            await storage.insert_transactions(batch)

        assert await storage.list_transactions() == []
        assert await _balance(storage, account.id) == Decimal("1000")

    @pytest.mark.asyncio
    async def test_batch_insert(self, storage):
        await storage.initialize()
        account = await _add_account(storage)
        batch = [make_transaction(account.id, "10"), make_transaction(account.id, "15")]

        ids = await storage.insert_transactions(batch)

        assert ids == [tx.id for tx in batch]
        assert await _balance(storage, account.id) == Decimal("975")

    @pytest.mark.asyncio
    async def test_delete_missing_transaction(self, storage):
        await storage.initialize()
        with pytest.raises(NotFoundError):
            await storage.delete_transaction(uuid4())

    @pytest.mark.asyncio
    async def test_listed_newest_first(self, storage):
        await storage.initialize()
        account = await _add_account(storage)
        older = make_transaction(account.id, "1", occurred_at=NOW - timedelta(days=2))
        newer = make_transaction(account.id, "2", occurred_at=NOW)
        await storage.insert_transaction(older)
        await storage.insert_transaction(newer)

        assert [t.id for t in await storage.list_transactions()] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_range_query_and_expense_sum(self, storage):
        await storage.initialize()
        account = await _add_account(storage)
        await storage.insert_transactions([
            make_transaction(account.id, "100", occurred_at=NOW - timedelta(days=40)),
            make_transaction(account.id, "40", occurred_at=NOW - timedelta(days=30)),
            make_transaction(account.id, "20.50", occurred_at=NOW - timedelta(days=1)),
            make_transaction(account.id, "999", type=Direction.INCOME, occurred_at=NOW),
        ])

        start, end = NOW - timedelta(days=30), NOW
        in_range = await storage.list_transactions_between(start, end)

        assert len(in_range) == 3
        assert await storage.recent_expense_sum(start, end) == Decimal("60.50")

    @pytest.mark.asyncio
    async def test_aware_and_naive_timestamps_mix(self, storage):
        await storage.initialize()
        account = await _add_account(storage)
        aware = make_transaction(
            account.id, "50", occurred_at=datetime(2025, 1, 14, 9, tzinfo=timezone.utc)
        )
        naive = make_transaction(account.id, "20", occurred_at=NOW - timedelta(days=2))
        await storage.insert_transactions([aware, naive])

        start, end = NOW - timedelta(days=30), NOW
        listed = await storage.list_transactions()
        in_range = await storage.list_transactions_between(start, end)

        assert all(t.occurred_at.tzinfo is None for t in listed)
        assert {t.id for t in in_range} == {aware.id, naive.id}
        assert await storage.recent_expense_sum(start, end) == Decimal("70")

    @pytest.mark.asyncio
    async def test_fields_round_trip(self, storage):
        await storage.initialize()
        account = await _add_account(storage)
        tx = make_transaction(
            account.id,
            "12.34",
            category="food",
            description="Lunch",
            merchant="Noodle Bar",
            raw_data="微信支付 ¥12.34",
        )
        await storage.insert_transaction(tx)

        assert (await storage.list_transactions())[0] == tx


class TestRecurringRules:
    """Tests for rule CRUD."""

    @pytest.mark.asyncio
    async def test_listed_oldest_first(self, storage):
        await storage.initialize()
        account = await _add_account(storage)
        first = make_rule(account.id, "1", created_at=datetime(2025, 1, 1))
        second = make_rule(account.id, "2", created_at=datetime(2025, 1, 2))
        await storage.insert_rule(second)
        await storage.insert_rule(first)

        assert [r.id for r in await storage.list_recurring_rules()] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_update_revalidates(self, storage):
        await storage.initialize()
        account = await _add_account(storage)
        rule = make_rule(account.id, "100", day_of_month=5)
        await storage.insert_rule(rule)

        updated = await storage.update_rule(
            rule.id,
            RecurringRulePatch(frequency=Frequency.WEEKLY, day_of_week=12),
        )

        assert updated.day_of_week == 6
        assert updated.day_of_month is None
        stored = (await storage.list_recurring_rules())[0]
        assert stored.frequency is Frequency.WEEKLY
        assert stored.day_of_week == 6

    @pytest.mark.asyncio
    async def test_delete(self, storage):
        await storage.initialize()
        account = await _add_account(storage)
        rule = make_rule(account.id, "100")
        await storage.insert_rule(rule)

        await storage.delete_rule(rule.id)

        assert await storage.list_recurring_rules() == []
        with pytest.raises(NotFoundError):
            await storage.delete_rule(rule.id)

    @pytest.mark.asyncio
    async def test_rule_for_unknown_account(self, storage):
        await storage.initialize()
        account = await _add_account(storage)
        rule = make_rule(account.id, "100")
        await storage.insert_rule(rule)

        with pytest.raises(NotFoundError):
            await storage.insert_rule(make_rule(uuid4(), "5"))
        with pytest.raises(NotFoundError):
            await storage.update_rule(rule.id, RecurringRulePatch(account_id=uuid4()))

        assert [r.account_id for r in await storage.list_recurring_rules()] == [account.id]


class TestSettings:
    """Tests for the settings singleton."""

    @pytest.mark.asyncio
    async def test_patch_persists(self, storage):
        await storage.initialize()
        updated = await storage.update_settings(
            UserSettingsPatch(payday_of_month=25, notification_apps=["com.example.bank"])
        )
        stored = await storage.get_settings()

        assert updated == stored
        assert stored.payday_of_month == 25
        assert stored.notification_apps == ["com.example.bank"]
        assert stored.currency == "CNY"


class TestJsonFileStorage:
    """Tests specific to the JSON document store."""

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        path = tmp_path / "ledger.json"
        first = JsonFileLedgerStorage(path)
        await first.initialize()
        account = await _add_account(first)
        await first.insert_transaction(make_transaction(account.id, "5"))

        reopened = JsonFileLedgerStorage(path)
        assert await _balance(reopened, account.id) == Decimal("995")
        assert len(await reopened.list_transactions()) == 1

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_storage_error(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageError):
            await JsonFileLedgerStorage(path).list_accounts()


class TestSQLiteStorage:
    """Tests specific to the SQLite backend."""

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        path = str(tmp_path / "ledger.db")
        first = SQLiteLedgerStorage(path)
        await first.initialize()
        account = await _add_account(first)
        await first.insert_transaction(make_transaction(account.id, "5"))
        first.close()

        reopened = SQLiteLedgerStorage(path)
        await reopened.initialize()
        assert await _balance(reopened, account.id) == Decimal("995")
        assert len(await reopened.list_accounts()) == 2
        reopened.close()
