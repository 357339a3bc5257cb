"""
Two-Stage Batch Validation

Importers (bill CSVs, notification and SMS parsers) submit batches of
transaction records. Each record is checked before anything is written.

STAGE 1 - SCHEMA VALIDATION:
- Type checking and required fields, through the Transaction model
- Non-positive amounts, unknown directions, malformed dates

STAGE 2 - SEMANTIC VALIDATION:
- The owning account must exist
- Exact duplicates of stored transactions, or of an earlier record in
  the same batch, are skipped

A record failing either stage is skipped and reported. The remaining
records are still imported.

IMPORTANT: Validation NEVER silently fixes records.
It reports them for review.
"""

from decimal import Decimal
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence, Union
from uuid import UUID

from pydantic import ValidationError

from lifeline.models.imports import ValidationIssue
from lifeline.models.ledger import Account, Direction, Transaction


TransactionRecord = Union[Transaction, Mapping[str, Any]]

DuplicateKey = tuple[UUID, Direction, Decimal, datetime, str]


def duplicate_key(tx: Transaction) -> DuplicateKey:
    """Fields that make two transactions the same real-world event."""
    return (tx.account_id, tx.type, tx.amount, tx.occurred_at, tx.description)


class TransactionBatchValidator:
    """
    Validates a batch of transaction records against the current ledger.

    Args:
        accounts: Accounts that currently exist
        existing_transactions: Stored transactions, for duplicate checks
    """

    def __init__(
        self,
        accounts: Iterable[Account],
        existing_transactions: Iterable[Transaction] = (),
    ):
        self._account_ids = {account.id for account in accounts}
        self._existing_keys = {duplicate_key(tx) for tx in existing_transactions}

    def _validate_schema(
        self,
        index: int,
        record: TransactionRecord,
    ) -> tuple[Union[Transaction, None], list[ValidationIssue]]:
        """
        Stage 1: Build a Transaction from the record.

        Returns: (transaction or None, list_of_issues)
        """
        if isinstance(record, Transaction):
            return record, []

        try:
            return Transaction.model_validate(record), []
        except ValidationError as e:
            issues = []
            for error in e.errors():
                location = ".".join(str(part) for part in error["loc"]) or "record"
                issues.append(ValidationIssue(
                    index=index,
                    field=location,
                    issue_type="invalid",
                    message=f"{location}: {error['msg']}",
                ))
            return None, issues

    def _validate_semantic(
        self,
        index: int,
        tx: Transaction,
        seen_keys: set[DuplicateKey],
    ) -> list[ValidationIssue]:
        """
        Stage 2: Check the transaction against the ledger.

        Checks:
        - Account existence
        - Duplicates against storage and the batch so far
        """
        issues = []

        if tx.account_id not in self._account_ids:
            issues.append(ValidationIssue(
                index=index,
                field="account_id",
                issue_type="unknown_account",
                message=f"Account {tx.account_id} does not exist",
            ))

        key = duplicate_key(tx)
        if key in self._existing_keys:
            issues.append(ValidationIssue(
                index=index,
                field="transaction",
                issue_type="duplicate",
                message="An identical transaction is already recorded",
            ))
        elif key in seen_keys:
            issues.append(ValidationIssue(
                index=index,
                field="transaction",
                issue_type="duplicate",
                message="Repeats an earlier record in this batch",
            ))

        return issues

    def validate(
        self,
        records: Sequence[TransactionRecord],
    ) -> tuple[list[Transaction], list[ValidationIssue]]:
        """
        Run both stages over every record.

        Returns:
            (transactions that passed, issues for the ones that did not)
        """
        valid: list[Transaction] = []
        issues: list[ValidationIssue] = []
        seen_keys: set[DuplicateKey] = set()

        for index, record in enumerate(records):
            tx, schema_issues = self._validate_schema(index, record)
            if tx is None:
                # Can't check semantics without a valid transaction
                issues.extend(schema_issues)
                continue

            semantic_issues = self._validate_semantic(index, tx, seen_keys)
            if semantic_issues:
                issues.extend(semantic_issues)
                continue

            seen_keys.add(duplicate_key(tx))
            valid.append(tx)

        return valid, issues
