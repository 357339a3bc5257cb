"""
Data Models Package

This package contains all Pydantic models used by Lifeline.
All data flowing between storage, the forecast engine and the UI
conforms to these schemas.
"""

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
from lifeline.models.forecast import (
    ForecastEvent,
    ForecastPoint,
    SafetyLandingPoint,
    SafetyLevel,
)
from lifeline.models.imports import ImportResult, ValidationIssue
from lifeline.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountPatch",
    "AccountType",
    "BudgetMode",
    "Direction",
    "Frequency",
    "Locale",
    "RecurringRule",
    "RecurringRulePatch",
    "Transaction",
    "TransactionSource",
    "UserSettings",
    "UserSettingsPatch",
    "apply_patch",
    # Forecast models
    "ForecastEvent",
    "ForecastPoint",
    "SafetyLandingPoint",
    "SafetyLevel",
    # Import models
    "ImportResult",
    "ValidationIssue",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
