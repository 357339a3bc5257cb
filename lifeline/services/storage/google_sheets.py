"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is offered as a storage backend because:
1. Non-technical users can view their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (we handle this with careful ordering and compensation)
- Limited query capabilities (we filter in Python)

Each entity lives in its own worksheet, one row per record, with a
header row naming the columns. Cells are written RAW so Sheets never
reinterprets amounts or dates.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Sequence, Type, TypeVar
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from lifeline.config import GoogleSheetsSettings, get_settings
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
    ConnectionError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    default_account,
    default_settings,
)


logger = structlog.get_logger(__name__)

ACCOUNT_COLUMNS = list(Account.model_fields)
TRANSACTION_COLUMNS = list(Transaction.model_fields)
RULE_COLUMNS = list(RecurringRule.model_fields)
SETTINGS_COLUMNS = list(UserSettings.model_fields)

# Columns holding JSON documents rather than scalars
JSON_COLUMNS = frozenset({"notification_apps"})

ModelT = TypeVar("ModelT", bound=BaseModel)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for connecting.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet, writing the header row on creation."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_accounts_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.accounts_sheet_name, ACCOUNT_COLUMNS)

    def get_transactions_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.transactions_sheet_name,
            TRANSACTION_COLUMNS,
            rows=5000,  # Transactions grow fastest
        )

    def get_rules_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.rules_sheet_name, RULE_COLUMNS)

    def get_settings_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.settings_sheet_name, SETTINGS_COLUMNS, rows=10)


def _to_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _model_to_row(model: BaseModel, columns: list[str]) -> list[str]:
    """Convert a model to a spreadsheet row in column order."""
    data = model.model_dump(mode="json")
    return [_to_cell(data.get(column)) for column in columns]


def _row_to_model(model_cls: Type[ModelT], row: list[str], columns: list[str]) -> ModelT:
    """
    Convert a spreadsheet row back into a model.

    Empty cells are left out so the model's defaults apply, which
    also covers rows written before a column existed.
    """
    record = {}
    for column, cell in zip(columns, row):
        if cell == "":
            continue
        record[column] = json.loads(cell) if column in JSON_COLUMNS else cell
    return model_cls.model_validate(record)


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of ledger storage.

    Sheets has no multi-row transactions, so balance side-effects are
    ordered and compensated: if the second half of a write fails, the
    first half is undone before the error is raised.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # -------------------------------------------------------------------------
    # Row helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _data_rows(sheet: gspread.Worksheet) -> list[tuple[int, list[str]]]:
        """(row number, values) for every non-empty row below the header."""
        return [
            (idx, row)
            for idx, row in enumerate(sheet.get_all_values()[1:], start=2)
            if row and row[0]
        ]

    @staticmethod
    def _find_row(sheet: gspread.Worksheet, entity_id: UUID) -> Optional[tuple[int, list[str]]]:
        for idx, row in GoogleSheetsLedgerStorage._data_rows(sheet):
            if row[0] == str(entity_id):
                return idx, row
        return None

    @staticmethod
    def _write_row(sheet: gspread.Worksheet, row_idx: int, values: list[str]) -> None:
        for col_idx, value in enumerate(values, start=1):
            sheet.update_cell(row_idx, col_idx, value)

    @staticmethod
    def _load(
        sheet: gspread.Worksheet,
        model_cls: Type[ModelT],
        columns: list[str],
    ) -> list[ModelT]:
        models = []
        for idx, row in GoogleSheetsLedgerStorage._data_rows(sheet):
            try:
                models.append(_row_to_model(model_cls, row, columns))
            except ValueError as e:
                logger.warning(
                    "sheet_row_skipped",
                    sheet=sheet.title,
                    row=idx,
                    error=str(e),
                )
        return models

    def _set_balances(
        self,
        sheet: gspread.Worksheet,
        transactions: Sequence[Transaction],
        sign: int,
    ) -> list[tuple[int, list[str]]]:
        """
        Apply transactions to their accounts' balances.

        Returns the (row number, original values) of every account row
        touched, so the caller can put them back.

        Raises:
            NotFoundError: Before anything is written, if an account is missing
        """
        rows = {row[0]: (idx, row) for idx, row in self._data_rows(sheet)}
        updated: dict[str, tuple[int, list[str], Account]] = {}

        for tx in transactions:
            key = str(tx.account_id)
            if key in updated:
                idx, original, account = updated[key]
            elif key in rows:
                idx, original = rows[key]
                account = _row_to_model(Account, original, ACCOUNT_COLUMNS)
            else:
                raise NotFoundError(f"Account not found: {tx.account_id}")
            account = account.model_copy(update={
                "balance": account.balance + sign * tx.signed_amount,
                "updated_at": datetime.now(),
            })
            updated[key] = (idx, original, account)

        written = []
        try:
            for idx, original, account in updated.values():
                # Recorded first: a failing cell write leaves the row half updated
                padding = [""] * (len(ACCOUNT_COLUMNS) - len(original))
                written.append((idx, list(original) + padding))
                self._write_row(sheet, idx, _model_to_row(account, ACCOUNT_COLUMNS))
        except Exception:
            self._restore_rows(sheet, written)
            raise
        return written

    def _restore_rows(self, sheet: gspread.Worksheet, rows: list[tuple[int, list[str]]]) -> None:
        for idx, original in rows:
            try:
                self._write_row(sheet, idx, original)
            except Exception as e:
                logger.error(
                    "sheet_compensation_failed",
                    sheet=sheet.title,
                    row=idx,
                    error=str(e),
                )

    # -------------------------------------------------------------------------
    # Interface
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        try:
            settings_sheet = self._client.get_settings_sheet()
            if not self._data_rows(settings_sheet):
                settings_sheet.append_row(
                    _model_to_row(default_settings(), SETTINGS_COLUMNS),
                    value_input_option="RAW",
                )
            accounts_sheet = self._client.get_accounts_sheet()
            if not self._data_rows(accounts_sheet):
                accounts_sheet.append_row(
                    _model_to_row(default_account(), ACCOUNT_COLUMNS),
                    value_input_option="RAW",
                )
            self._client.get_transactions_sheet()
            self._client.get_rules_sheet()
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to initialize spreadsheet: {e}")

    async def list_accounts(self) -> list[Account]:
        try:
            accounts = self._load(self._client.get_accounts_sheet(), Account, ACCOUNT_COLUMNS)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list accounts: {e}")
        accounts.sort(key=lambda a: a.created_at, reverse=True)
        return accounts

    async def list_transactions(self) -> list[Transaction]:
        try:
            transactions = self._load(
                self._client.get_transactions_sheet(), Transaction, TRANSACTION_COLUMNS
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")
        transactions.sort(key=lambda t: t.occurred_at, reverse=True)
        return transactions

    async def list_recurring_rules(self) -> list[RecurringRule]:
        try:
            rules = self._load(self._client.get_rules_sheet(), RecurringRule, RULE_COLUMNS)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list recurring rules: {e}")
        rules.sort(key=lambda r: r.created_at)
        return rules

    async def get_settings(self) -> UserSettings:
        try:
            rows = self._data_rows(self._client.get_settings_sheet())
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read settings: {e}")
        if not rows:
            return default_settings()
        return _row_to_model(UserSettings, rows[0][1], SETTINGS_COLUMNS)

    async def insert_account(self, account: Account) -> UUID:
        try:
            sheet = self._client.get_accounts_sheet()
            sheet.append_row(_model_to_row(account, ACCOUNT_COLUMNS), value_input_option="RAW")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save account: {e}")
        return account.id

    async def update_account(self, account_id: UUID, patch: AccountPatch) -> Account:
        try:
            sheet = self._client.get_accounts_sheet()
            found = self._find_row(sheet, account_id)
            if found is None:
                raise NotFoundError(f"Account not found: {account_id}")
            idx, row = found
            account = apply_patch(_row_to_model(Account, row, ACCOUNT_COLUMNS), patch)
            self._write_row(sheet, idx, _model_to_row(account, ACCOUNT_COLUMNS))
            return account
        except (StorageError, ValueError):
            raise
        except Exception as e:
            raise StorageError(f"Failed to update account: {e}")

    async def delete_account(self, account_id: UUID) -> None:
        try:
            accounts_sheet = self._client.get_accounts_sheet()
            found = self._find_row(accounts_sheet, account_id)
            if found is None:
                raise NotFoundError(f"Account not found: {account_id}")

            # Dependents first, bottom-up so row numbers stay valid
            for sheet in (self._client.get_transactions_sheet(), self._client.get_rules_sheet()):
                owned = [
                    idx for idx, row in self._data_rows(sheet)
                    if len(row) > 1 and row[1] == str(account_id)
                ]
                for idx in reversed(owned):
                    sheet.delete_rows(idx)

            accounts_sheet.delete_rows(found[0])
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete account: {e}")

    async def insert_transaction(self, transaction: Transaction) -> UUID:
        ids = await self.insert_transactions([transaction])
        return ids[0]

    async def insert_transactions(self, transactions: Sequence[Transaction]) -> list[UUID]:
        if not transactions:
            return []
        try:
            accounts_sheet = self._client.get_accounts_sheet()
            known = {row[0] for _, row in self._data_rows(accounts_sheet)}
            for tx in transactions:
                if str(tx.account_id) not in known:
                    raise NotFoundError(f"Account not found: {tx.account_id}")

            tx_sheet = self._client.get_transactions_sheet()
            first_row = len(tx_sheet.get_all_values()) + 1
            tx_sheet.append_rows(
                [_model_to_row(tx, TRANSACTION_COLUMNS) for tx in transactions],
                value_input_option="RAW",
            )

            try:
                self._set_balances(accounts_sheet, transactions, sign=1)
            except Exception:
                tx_sheet.delete_rows(first_row, first_row + len(transactions) - 1)
                raise
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save transactions: {e}")
        return [tx.id for tx in transactions]

    async def delete_transaction(self, transaction_id: UUID) -> None:
        try:
            tx_sheet = self._client.get_transactions_sheet()
            found = self._find_row(tx_sheet, transaction_id)
            if found is None:
                raise NotFoundError(f"Transaction not found: {transaction_id}")
            idx, row = found
            tx = _row_to_model(Transaction, row, TRANSACTION_COLUMNS)

            accounts_sheet = self._client.get_accounts_sheet()
            reversed_rows = self._set_balances(accounts_sheet, [tx], sign=-1)
            try:
                tx_sheet.delete_rows(idx)
            except Exception:
                self._restore_rows(accounts_sheet, reversed_rows)
                raise
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")

    async def list_transactions_between(
        self,
        start: datetime,
        end: datetime,
    ) -> list[Transaction]:
        transactions = await self.list_transactions()
        return [t for t in transactions if start <= t.occurred_at <= end]

    async def recent_expense_sum(self, start: datetime, end: datetime) -> Decimal:
        transactions = await self.list_transactions_between(start, end)
        return sum(
            (t.amount for t in transactions if t.type is Direction.EXPENSE),
            Decimal("0"),
        )

    def _require_account(self, account_id: UUID) -> None:
        if self._find_row(self._client.get_accounts_sheet(), account_id) is None:
            raise NotFoundError(f"Account not found: {account_id}")

    async def insert_rule(self, rule: RecurringRule) -> UUID:
        try:
            self._require_account(rule.account_id)
            sheet = self._client.get_rules_sheet()
            sheet.append_row(_model_to_row(rule, RULE_COLUMNS), value_input_option="RAW")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save recurring rule: {e}")
        return rule.id

    async def update_rule(self, rule_id: UUID, patch: RecurringRulePatch) -> RecurringRule:
        try:
            sheet = self._client.get_rules_sheet()
            found = self._find_row(sheet, rule_id)
            if found is None:
                raise NotFoundError(f"Recurring rule not found: {rule_id}")
            idx, row = found
            rule = apply_patch(_row_to_model(RecurringRule, row, RULE_COLUMNS), patch)
            self._require_account(rule.account_id)
            self._write_row(sheet, idx, _model_to_row(rule, RULE_COLUMNS))
            return rule
        except (StorageError, ValueError):
            raise
        except Exception as e:
            raise StorageError(f"Failed to update recurring rule: {e}")

    async def delete_rule(self, rule_id: UUID) -> None:
        try:
            sheet = self._client.get_rules_sheet()
            found = self._find_row(sheet, rule_id)
            if found is None:
                raise NotFoundError(f"Recurring rule not found: {rule_id}")
            sheet.delete_rows(found[0])
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete recurring rule: {e}")

    async def update_settings(self, patch: UserSettingsPatch) -> UserSettings:
        settings = apply_patch(await self.get_settings(), patch)
        try:
            sheet = self._client.get_settings_sheet()
            row = _model_to_row(settings, SETTINGS_COLUMNS)
            rows = self._data_rows(sheet)
            if rows:
                self._write_row(sheet, rows[0][0], row)
            else:
                sheet.append_row(row, value_input_option="RAW")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update settings: {e}")
        return settings
