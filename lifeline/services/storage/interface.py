"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Use an embedded relational database (SQLite) on a device
2. Use a plain key-value document store where no database is available
3. Use Google Sheets so the data can be browsed by hand
4. Keep the forecast engine and coordinator decoupled from all of them

The interface is intentionally small: read everything, insert,
update by id, delete by id, a date-range query and one aggregate.

CRITICAL: Inserting or deleting a transaction must adjust the owning
account's balance in the same atomic step. Either both happen or
neither does.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from lifeline.models.ledger import (
    Account,
    AccountPatch,
    RecurringRule,
    RecurringRulePatch,
    Transaction,
    UserSettings,
    UserSettingsPatch,
)


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Any storage implementation (SQLite, JSON documents, Google Sheets)
    must implement these methods.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """
        Prepare the store for use.

        Creates the schema if needed and seeds default settings and a
        default cash account into an empty store. Safe to call twice.

        Raises:
            StorageError: If the store cannot be prepared
        """
        pass

    # -------------------------------------------------------------------------
    # Full snapshot reads
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_accounts(self) -> list[Account]:
        """All accounts, newest first."""
        pass

    @abstractmethod
    async def list_transactions(self) -> list[Transaction]:
        """All transactions, most recent occurrence first."""
        pass

    @abstractmethod
    async def list_recurring_rules(self) -> list[RecurringRule]:
        """All recurring rules, oldest first (this is forecast input order)."""
        pass

    @abstractmethod
    async def get_settings(self) -> UserSettings:
        """The singleton user settings."""
        pass

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_account(self, account: Account) -> UUID:
        """
        Save a new account.

        Returns:
            The account's ID
        """
        pass

    @abstractmethod
    async def update_account(self, account_id: UUID, patch: AccountPatch) -> Account:
        """
        Apply a partial update to an account.

        Returns:
            The updated account

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def delete_account(self, account_id: UUID) -> None:
        """
        Delete an account together with its transactions and rules.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> UUID:
        """
        Save a transaction and apply it to its account's balance.

        Raises:
            NotFoundError: If the owning account doesn't exist
            StorageError: If the save fails (nothing is applied)
        """
        pass

    @abstractmethod
    async def insert_transactions(self, transactions: Sequence[Transaction]) -> list[UUID]:
        """
        Save several transactions at once, all or nothing.

        Raises:
            NotFoundError: If any owning account doesn't exist
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> None:
        """
        Delete a transaction and reverse its effect on its account's balance.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def list_transactions_between(
        self,
        start: datetime,
        end: datetime,
    ) -> list[Transaction]:
        """Transactions with start <= occurred_at <= end, most recent first."""
        pass

    @abstractmethod
    async def recent_expense_sum(self, start: datetime, end: datetime) -> Decimal:
        """Total of expense amounts with start <= occurred_at <= end."""
        pass

    # -------------------------------------------------------------------------
    # Recurring rules
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_rule(self, rule: RecurringRule) -> UUID:
        """
        Save a new recurring rule. Returns its ID.

        Raises:
            NotFoundError: If the rule's account doesn't exist
        """
        pass

    @abstractmethod
    async def update_rule(self, rule_id: UUID, patch: RecurringRulePatch) -> RecurringRule:
        """
        Apply a partial update to a recurring rule.

        Raises:
            NotFoundError: If the rule, or the account it ends up on, doesn't exist
        """
        pass

    @abstractmethod
    async def delete_rule(self, rule_id: UUID) -> None:
        """
        Delete a recurring rule.

        Raises:
            NotFoundError: If the rule doesn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    @abstractmethod
    async def update_settings(self, patch: UserSettingsPatch) -> UserSettings:
        """Apply a partial update to the user settings and return them."""
        pass


def default_settings() -> UserSettings:
    """Settings seeded into an empty store."""
    return UserSettings()


def default_account() -> Account:
    """Account seeded into an empty store."""
    return Account(name="现金", currency="CNY")


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
