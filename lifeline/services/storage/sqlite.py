"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the default backend because:
1. It ships with Python, nothing to install or run
2. Real transactions make the balance side-effects atomic
3. Foreign keys give us the account deletion cascade for free

Money is stored as TEXT and parsed back into Decimal, so balances
never pick up float rounding. Timestamps are ISO strings with fixed
microsecond precision, which sort and compare correctly as text.
"""

import json
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID

from lifeline.models.ledger import (
    Account,
    AccountPatch,
    AccountType,
    BudgetMode,
    Direction,
    Frequency,
    Locale,
    RecurringRule,
    RecurringRulePatch,
    Transaction,
    TransactionSource,
    UserSettings,
    UserSettingsPatch,
    apply_patch,
)
from lifeline.services.storage.interface import (
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    default_account,
    default_settings,
)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    balance TEXT NOT NULL DEFAULT '0',
    currency TEXT NOT NULL DEFAULT 'CNY',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    amount TEXT NOT NULL,
    type TEXT NOT NULL,
    category TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    merchant TEXT,
    source TEXT NOT NULL DEFAULT 'manual',
    raw_data TEXT,
    occurred_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS recurring_rules (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    amount TEXT NOT NULL,
    type TEXT NOT NULL,
    frequency TEXT NOT NULL,
    day_of_week INTEGER,
    day_of_month INTEGER,
    custom_days INTEGER,
    start_date TEXT NOT NULL,
    end_date TEXT,
    auto_confirm INTEGER NOT NULL DEFAULT 1,
    next_occurrence TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    locale TEXT NOT NULL,
    currency TEXT NOT NULL,
    currency_symbol TEXT NOT NULL,
    payday_of_month INTEGER NOT NULL,
    daily_budget_mode TEXT NOT NULL,
    manual_daily_budget TEXT,
    enable_notification_listener INTEGER NOT NULL DEFAULT 0,
    enable_sms_parser INTEGER NOT NULL DEFAULT 0,
    notification_apps TEXT NOT NULL DEFAULT '[]'
);

CREATE INDEX IF NOT EXISTS idx_transactions_occurred_at ON transactions(occurred_at);
CREATE INDEX IF NOT EXISTS idx_transactions_account_id ON transactions(account_id);
"""

ACCOUNT_COLUMNS = ["id", "name", "type", "balance", "currency", "created_at", "updated_at"]

TRANSACTION_COLUMNS = [
    "id",
    "account_id",
    "amount",
    "type",
    "category",
    "description",
    "merchant",
    "source",
    "raw_data",
    "occurred_at",
    "created_at",
]

RULE_COLUMNS = [
    "id",
    "account_id",
    "name",
    "amount",
    "type",
    "frequency",
    "day_of_week",
    "day_of_month",
    "custom_days",
    "start_date",
    "end_date",
    "auto_confirm",
    "next_occurrence",
    "created_at",
    "updated_at",
]

SETTINGS_COLUMNS = [
    "locale",
    "currency",
    "currency_symbol",
    "payday_of_month",
    "daily_budget_mode",
    "manual_daily_budget",
    "enable_notification_listener",
    "enable_sms_parser",
    "notification_apps",
]


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="microseconds") if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteLedgerStorage(LedgerStorageInterface):
    """
    Embedded relational implementation of ledger storage.

    One connection is held for the lifetime of the storage object,
    which also makes ':memory:' databases usable.
    """

    def __init__(self, database_path: str = "lifeline.db"):
        self._database_path = database_path
        self._conn: Optional[sqlite3.Connection] = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(self._database_path)
                self._conn.row_factory = sqlite3.Row
                self._conn.execute("PRAGMA foreign_keys = ON")
            except sqlite3.Error as e:
                raise StorageError(f"Failed to open database {self._database_path}: {e}")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _account_to_row(account: Account) -> tuple:
        return (
            str(account.id),
            account.name,
            account.type.value,
            str(account.balance),
            account.currency,
            _ts(account.created_at),
            _ts(account.updated_at),
        )

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> Account:
        return Account(
            id=UUID(row["id"]),
            name=row["name"],
            type=AccountType(row["type"]),
            balance=Decimal(row["balance"]),
            currency=row["currency"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _transaction_to_row(tx: Transaction) -> tuple:
        return (
            str(tx.id),
            str(tx.account_id),
            str(tx.amount),
            tx.type.value,
            tx.category,
            tx.description,
            tx.merchant,
            tx.source.value,
            tx.raw_data,
            _ts(tx.occurred_at),
            _ts(tx.created_at),
        )

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=UUID(row["id"]),
            account_id=UUID(row["account_id"]),
            amount=Decimal(row["amount"]),
            type=Direction(row["type"]),
            category=row["category"],
            description=row["description"],
            merchant=row["merchant"],
            source=TransactionSource(row["source"]),
            raw_data=row["raw_data"],
            occurred_at=_parse_ts(row["occurred_at"]),
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _rule_to_row(rule: RecurringRule) -> tuple:
        return (
            str(rule.id),
            str(rule.account_id),
            rule.name,
            str(rule.amount),
            rule.type.value,
            rule.frequency.value,
            rule.day_of_week,
            rule.day_of_month,
            rule.custom_days,
            _ts(rule.start_date),
            _ts(rule.end_date),
            int(rule.auto_confirm),
            rule.next_occurrence.isoformat() if rule.next_occurrence else None,
            _ts(rule.created_at),
            _ts(rule.updated_at),
        )

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> RecurringRule:
        return RecurringRule(
            id=UUID(row["id"]),
            account_id=UUID(row["account_id"]),
            name=row["name"],
            amount=Decimal(row["amount"]),
            type=Direction(row["type"]),
            frequency=Frequency(row["frequency"]),
            day_of_week=row["day_of_week"],
            day_of_month=row["day_of_month"],
            custom_days=row["custom_days"],
            start_date=_parse_ts(row["start_date"]),
            end_date=_parse_ts(row["end_date"]),
            auto_confirm=bool(row["auto_confirm"]),
            next_occurrence=(
                date.fromisoformat(row["next_occurrence"]) if row["next_occurrence"] else None
            ),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _settings_to_row(settings: UserSettings) -> tuple:
        return (
            settings.locale.value,
            settings.currency,
            settings.currency_symbol,
            settings.payday_of_month,
            settings.daily_budget_mode.value,
            str(settings.manual_daily_budget) if settings.manual_daily_budget is not None else None,
            int(settings.enable_notification_listener),
            int(settings.enable_sms_parser),
            json.dumps(settings.notification_apps),
        )

    @staticmethod
    def _row_to_settings(row: sqlite3.Row) -> UserSettings:
        return UserSettings(
            locale=Locale(row["locale"]),
            currency=row["currency"],
            currency_symbol=row["currency_symbol"],
            payday_of_month=row["payday_of_month"],
            daily_budget_mode=BudgetMode(row["daily_budget_mode"]),
            manual_daily_budget=(
                Decimal(row["manual_daily_budget"]) if row["manual_daily_budget"] else None
            ),
            enable_notification_listener=bool(row["enable_notification_listener"]),
            enable_sms_parser=bool(row["enable_sms_parser"]),
            notification_apps=json.loads(row["notification_apps"]),
        )

    # -------------------------------------------------------------------------
    # Helpers (must run inside an open transaction)
    # -------------------------------------------------------------------------

    def _fetch_account(self, conn: sqlite3.Connection, account_id: UUID) -> Account:
        row = conn.execute(
            "SELECT * FROM accounts WHERE id = ?", (str(account_id),)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return self._row_to_account(row)

    def _adjust_balance(
        self,
        conn: sqlite3.Connection,
        account_id: UUID,
        delta: Decimal,
    ) -> None:
        account = self._fetch_account(conn, account_id)
        conn.execute(
            "UPDATE accounts SET balance = ?, updated_at = ? WHERE id = ?",
            (str(account.balance + delta), _ts(datetime.now()), str(account_id)),
        )

    @staticmethod
    def _insert_sql(table: str, columns: list[str]) -> str:
        placeholders = ", ".join("?" for _ in columns)
        return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"

    @staticmethod
    def _update_sql(table: str, columns: list[str]) -> str:
        assignments = ", ".join(f"{column} = ?" for column in columns[1:])
        return f"UPDATE {table} SET {assignments} WHERE id = ?"

    # -------------------------------------------------------------------------
    # Interface
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        conn = self._connection()
        try:
            conn.executescript(SCHEMA_SQL)
            with conn:
                if conn.execute("SELECT COUNT(*) FROM settings").fetchone()[0] == 0:
                    conn.execute(
                        f"INSERT INTO settings (id, {', '.join(SETTINGS_COLUMNS)}) "
                        f"VALUES (1, {', '.join('?' for _ in SETTINGS_COLUMNS)})",
                        self._settings_to_row(default_settings()),
                    )
                if conn.execute("SELECT COUNT(*) FROM accounts").fetchone()[0] == 0:
                    conn.execute(
                        self._insert_sql("accounts", ACCOUNT_COLUMNS),
                        self._account_to_row(default_account()),
                    )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to initialize database: {e}")

    async def list_accounts(self) -> list[Account]:
        try:
            rows = self._connection().execute(
                "SELECT * FROM accounts ORDER BY created_at DESC"
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list accounts: {e}")
        return [self._row_to_account(row) for row in rows]

    async def list_transactions(self) -> list[Transaction]:
        try:
            rows = self._connection().execute(
                "SELECT * FROM transactions ORDER BY occurred_at DESC"
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list transactions: {e}")
        return [self._row_to_transaction(row) for row in rows]

    async def list_recurring_rules(self) -> list[RecurringRule]:
        try:
            rows = self._connection().execute(
                "SELECT * FROM recurring_rules ORDER BY created_at ASC"
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list recurring rules: {e}")
        return [self._row_to_rule(row) for row in rows]

    async def get_settings(self) -> UserSettings:
        try:
            row = self._connection().execute(
                "SELECT * FROM settings WHERE id = 1"
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read settings: {e}")
        if row is None:
            return default_settings()
        return self._row_to_settings(row)

    async def insert_account(self, account: Account) -> UUID:
        conn = self._connection()
        try:
            with conn:
                conn.execute(
                    self._insert_sql("accounts", ACCOUNT_COLUMNS),
                    self._account_to_row(account),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save account: {e}")
        return account.id

    async def update_account(self, account_id: UUID, patch: AccountPatch) -> Account:
        conn = self._connection()
        try:
            with conn:
                account = apply_patch(self._fetch_account(conn, account_id), patch)
                row = self._account_to_row(account)
                conn.execute(
                    self._update_sql("accounts", ACCOUNT_COLUMNS),
                    row[1:] + row[:1],
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update account: {e}")
        return account

    async def delete_account(self, account_id: UUID) -> None:
        conn = self._connection()
        try:
            with conn:
                cursor = conn.execute("DELETE FROM accounts WHERE id = ?", (str(account_id),))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete account: {e}")
        if cursor.rowcount == 0:
            raise NotFoundError(f"Account not found: {account_id}")

    async def insert_transaction(self, transaction: Transaction) -> UUID:
        ids = await self.insert_transactions([transaction])
        return ids[0]

    async def insert_transactions(self, transactions: Sequence[Transaction]) -> list[UUID]:
        conn = self._connection()
        try:
            with conn:
                for tx in transactions:
                    self._adjust_balance(conn, tx.account_id, tx.signed_amount)
                    conn.execute(
                        self._insert_sql("transactions", TRANSACTION_COLUMNS),
                        self._transaction_to_row(tx),
                    )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save transactions: {e}")
        return [tx.id for tx in transactions]

    async def delete_transaction(self, transaction_id: UUID) -> None:
        conn = self._connection()
        try:
            with conn:
                row = conn.execute(
                    "SELECT * FROM transactions WHERE id = ?", (str(transaction_id),)
                ).fetchone()
                if row is None:
                    raise NotFoundError(f"Transaction not found: {transaction_id}")
                tx = self._row_to_transaction(row)
                self._adjust_balance(conn, tx.account_id, -tx.signed_amount)
                conn.execute("DELETE FROM transactions WHERE id = ?", (str(transaction_id),))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete transaction: {e}")

    async def list_transactions_between(
        self,
        start: datetime,
        end: datetime,
    ) -> list[Transaction]:
        try:
            rows = self._connection().execute(
                "SELECT * FROM transactions WHERE occurred_at BETWEEN ? AND ? "
                "ORDER BY occurred_at DESC",
                (_ts(start), _ts(end)),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to query transactions: {e}")
        return [self._row_to_transaction(row) for row in rows]

    async def recent_expense_sum(self, start: datetime, end: datetime) -> Decimal:
        # Amounts are TEXT; SUM() would coerce them to REAL
        try:
            rows = self._connection().execute(
                "SELECT amount FROM transactions "
                "WHERE type = ? AND occurred_at BETWEEN ? AND ?",
                (Direction.EXPENSE.value, _ts(start), _ts(end)),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to sum expenses: {e}")
        return sum((Decimal(row["amount"]) for row in rows), Decimal("0"))

    async def insert_rule(self, rule: RecurringRule) -> UUID:
        conn = self._connection()
        try:
            with conn:
                self._fetch_account(conn, rule.account_id)
                conn.execute(
                    self._insert_sql("recurring_rules", RULE_COLUMNS),
                    self._rule_to_row(rule),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save recurring rule: {e}")
        return rule.id

    async def update_rule(self, rule_id: UUID, patch: RecurringRulePatch) -> RecurringRule:
        conn = self._connection()
        try:
            with conn:
                row = conn.execute(
                    "SELECT * FROM recurring_rules WHERE id = ?", (str(rule_id),)
                ).fetchone()
                if row is None:
                    raise NotFoundError(f"Recurring rule not found: {rule_id}")
                rule = apply_patch(self._row_to_rule(row), patch)
                self._fetch_account(conn, rule.account_id)
                new_row = self._rule_to_row(rule)
                conn.execute(
                    self._update_sql("recurring_rules", RULE_COLUMNS),
                    new_row[1:] + new_row[:1],
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update recurring rule: {e}")
        return rule

    async def delete_rule(self, rule_id: UUID) -> None:
        conn = self._connection()
        try:
            with conn:
                cursor = conn.execute(
                    "DELETE FROM recurring_rules WHERE id = ?", (str(rule_id),)
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete recurring rule: {e}")
        if cursor.rowcount == 0:
            raise NotFoundError(f"Recurring rule not found: {rule_id}")

    async def update_settings(self, patch: UserSettingsPatch) -> UserSettings:
        settings = apply_patch(await self.get_settings(), patch)
        conn = self._connection()
        try:
            with conn:
                conn.execute(
                    f"INSERT OR REPLACE INTO settings (id, {', '.join(SETTINGS_COLUMNS)}) "
                    f"VALUES (1, {', '.join('?' for _ in SETTINGS_COLUMNS)})",
                    self._settings_to_row(settings),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update settings: {e}")
        return settings
