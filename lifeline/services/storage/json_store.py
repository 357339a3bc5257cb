"""
JSON Document Storage Implementation

A key-value store: each collection is one JSON document under a fixed
key, the way a browser keeps data in localStorage. Useful where no
database is available, and (with path=None) as a throwaway in-memory
store for tests and previews.

TRADEOFFS:
- Every write rewrites the whole file (fine for personal data volumes)
- Queries are filters in Python

ATOMICITY: An operation reads the documents it needs, changes copies,
and commits all changed documents in one step. The file is replaced
with os.replace, so a crash leaves either the old or the new file.
"""

import copy
import json
import os
import tempfile
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Sequence, Union
from uuid import UUID

from lifeline.models.ledger import (
    Account,
    AccountPatch,
    Direction,
    RecurringRule,
    RecurringRulePatch,
    Transaction,
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


STORAGE_KEYS = {
    "accounts": "lifeline_accounts",
    "transactions": "lifeline_transactions",
    "recurring_rules": "lifeline_recurring_rules",
    "settings": "lifeline_settings",
}


class JsonFileLedgerStorage(LedgerStorageInterface):
    """
    Key-value implementation of ledger storage.

    Args:
        path: JSON file to persist to. None keeps everything in memory.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self._path = Path(path) if path is not None else None
        self._documents: dict[str, Any] = {}
        self._loaded = False

    # -------------------------------------------------------------------------
    # Document access
    # -------------------------------------------------------------------------

    def _load(self) -> None:
        if self._loaded:
            return
        if self._path is not None and self._path.exists():
            try:
                self._documents = json.loads(self._path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise StorageError(f"Failed to read {self._path}: {e}")
        self._loaded = True

    def _get(self, key: str, default: Any) -> Any:
        """Read a document. Returns a copy so callers can change it freely."""
        self._load()
        return copy.deepcopy(self._documents.get(STORAGE_KEYS[key], default))

    def _commit(self, changes: dict[str, Any]) -> None:
        """Write changed documents together, or none of them."""
        documents = dict(self._documents)
        for key, value in changes.items():
            documents[STORAGE_KEYS[key]] = value

        if self._path is not None:
            self._write_file(documents)

        self._documents = documents

    def _write_file(self, documents: dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(documents, f, ensure_ascii=False, indent=2)
                os.replace(temp_path, self._path)
            except BaseException:
                Path(temp_path).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write {self._path}: {e}")

    def _accounts(self) -> list[Account]:
        return [Account.model_validate(item) for item in self._get("accounts", [])]

    def _transactions(self) -> list[Transaction]:
        return [Transaction.model_validate(item) for item in self._get("transactions", [])]

    def _rules(self) -> list[RecurringRule]:
        return [RecurringRule.model_validate(item) for item in self._get("recurring_rules", [])]

    @staticmethod
    def _dump(models: Sequence[Any]) -> list[dict]:
        return [model.model_dump(mode="json") for model in models]

    @staticmethod
    def _apply_to_balances(
        accounts: list[Account],
        transactions: Sequence[Transaction],
        sign: int,
    ) -> list[Account]:
        """Return accounts with the transactions' effects added (sign=1) or reversed (sign=-1)."""
        by_id = {account.id: account for account in accounts}
        now = datetime.now()
        for tx in transactions:
            account = by_id.get(tx.account_id)
            if account is None:
                raise NotFoundError(f"Account not found: {tx.account_id}")
            by_id[tx.account_id] = account.model_copy(
                update={
                    "balance": account.balance + sign * tx.signed_amount,
                    "updated_at": now,
                }
            )
        return [by_id[account.id] for account in accounts]

    # -------------------------------------------------------------------------
    # Interface
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        self._load()
        changes: dict[str, Any] = {}
        if STORAGE_KEYS["settings"] not in self._documents:
            changes["settings"] = default_settings().model_dump(mode="json")
        if not self._get("accounts", []):
            changes["accounts"] = self._dump([default_account()])
        if changes:
            self._commit(changes)

    async def list_accounts(self) -> list[Account]:
        accounts = self._accounts()
        accounts.sort(key=lambda a: a.created_at, reverse=True)
        return accounts

    async def list_transactions(self) -> list[Transaction]:
        transactions = self._transactions()
        transactions.sort(key=lambda t: t.occurred_at, reverse=True)
        return transactions

    async def list_recurring_rules(self) -> list[RecurringRule]:
        rules = self._rules()
        rules.sort(key=lambda r: r.created_at)
        return rules

    async def get_settings(self) -> UserSettings:
        data = self._get("settings", None)
        if data is None:
            return default_settings()
        return UserSettings.model_validate(data)

    async def insert_account(self, account: Account) -> UUID:
        accounts = self._accounts()
        accounts.append(account)
        self._commit({"accounts": self._dump(accounts)})
        return account.id

    async def update_account(self, account_id: UUID, patch: AccountPatch) -> Account:
        accounts = self._accounts()
        for index, account in enumerate(accounts):
            if account.id == account_id:
                accounts[index] = apply_patch(account, patch)
                self._commit({"accounts": self._dump(accounts)})
                return accounts[index]
        raise NotFoundError(f"Account not found: {account_id}")

    async def delete_account(self, account_id: UUID) -> None:
        accounts = self._accounts()
        remaining = [a for a in accounts if a.id != account_id]
        if len(remaining) == len(accounts):
            raise NotFoundError(f"Account not found: {account_id}")

        self._commit({
            "accounts": self._dump(remaining),
            "transactions": self._dump(
                [t for t in self._transactions() if t.account_id != account_id]
            ),
            "recurring_rules": self._dump(
                [r for r in self._rules() if r.account_id != account_id]
            ),
        })

    async def insert_transaction(self, transaction: Transaction) -> UUID:
        ids = await self.insert_transactions([transaction])
        return ids[0]

    async def insert_transactions(self, transactions: Sequence[Transaction]) -> list[UUID]:
        if not transactions:
            return []
        accounts = self._apply_to_balances(self._accounts(), transactions, sign=1)
        stored = self._transactions()
        stored.extend(transactions)
        self._commit({
            "accounts": self._dump(accounts),
            "transactions": self._dump(stored),
        })
        return [tx.id for tx in transactions]

    async def delete_transaction(self, transaction_id: UUID) -> None:
        stored = self._transactions()
        target = next((t for t in stored if t.id == transaction_id), None)
        if target is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        accounts = self._apply_to_balances(self._accounts(), [target], sign=-1)
        self._commit({
            "accounts": self._dump(accounts),
            "transactions": self._dump([t for t in stored if t.id != transaction_id]),
        })

    async def list_transactions_between(
        self,
        start: datetime,
        end: datetime,
    ) -> list[Transaction]:
        transactions = [
            t for t in self._transactions() if start <= t.occurred_at <= end
        ]
        transactions.sort(key=lambda t: t.occurred_at, reverse=True)
        return transactions

    async def recent_expense_sum(self, start: datetime, end: datetime) -> Decimal:
        transactions = await self.list_transactions_between(start, end)
        return sum(
            (t.amount for t in transactions if t.type is Direction.EXPENSE),
            Decimal("0"),
        )

    def _require_account(self, account_id: UUID) -> None:
        if not any(a.id == account_id for a in self._accounts()):
            raise NotFoundError(f"Account not found: {account_id}")

    async def insert_rule(self, rule: RecurringRule) -> UUID:
        self._require_account(rule.account_id)
        rules = self._rules()
        rules.append(rule)
        self._commit({"recurring_rules": self._dump(rules)})
        return rule.id

    async def update_rule(self, rule_id: UUID, patch: RecurringRulePatch) -> RecurringRule:
        rules = self._rules()
        for index, rule in enumerate(rules):
            if rule.id == rule_id:
                rules[index] = apply_patch(rule, patch)
                self._require_account(rules[index].account_id)
                self._commit({"recurring_rules": self._dump(rules)})
                return rules[index]
        raise NotFoundError(f"Recurring rule not found: {rule_id}")

    async def delete_rule(self, rule_id: UUID) -> None:
        rules = self._rules()
        remaining = [r for r in rules if r.id != rule_id]
        if len(remaining) == len(rules):
            raise NotFoundError(f"Recurring rule not found: {rule_id}")
        self._commit({"recurring_rules": self._dump(remaining)})

    async def update_settings(self, patch: UserSettingsPatch) -> UserSettings:
        settings = apply_patch(await self.get_settings(), patch)
        self._commit({"settings": settings.model_dump(mode="json")})
        return settings
