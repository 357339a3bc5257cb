"""
Audit Models for Lifeline

Every change to the ledger and every recomputation of the derived
snapshot is recorded as an audit event. This gives:
1. A history the user can look through
2. Debugging information when a forecast looks wrong
3. A record of storage failures that were surfaced to the user
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Accounts
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"

    # Transactions
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTIONS_IMPORTED = "transactions_imported"
    TRANSACTION_DELETED = "transaction_deleted"

    # Recurring rules
    RULE_ADDED = "rule_added"
    RULE_UPDATED = "rule_updated"
    RULE_DELETED = "rule_deleted"

    # Settings
    SETTINGS_UPDATED = "settings_updated"

    # Derived state
    SNAPSHOT_RECOMPUTED = "snapshot_recomputed"

    # Failures
    STORAGE_ERROR = "storage_error"
    VALIDATION_FAILED = "validation_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of the audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.now,
        description="When the event occurred"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'transaction', 'rule')"
    )
    entity_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_added(tx_id, "expense", "12.50")
        event = AuditEventBuilder.storage_error("insert_rule", "disk full")
    """

    @staticmethod
    def account_created(account_id: UUID, name: str, account_type: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account_id,
            description=f"Account created: {name}",
            details={"name": name, "type": account_type},
            is_user_action=True,
        )

    @staticmethod
    def account_updated(account_id: UUID, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_UPDATED,
            entity_type="account",
            entity_id=account_id,
            description=f"Account updated: {', '.join(fields) or 'no fields'}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def account_deleted(account_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=account_id,
            description="Account deleted with its transactions and rules",
            is_user_action=True,
        )

    @staticmethod
    def transaction_added(
        transaction_id: UUID,
        direction: str,
        amount: str,
        source: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction added: {direction} {amount}",
            details={"type": direction, "amount": amount, "source": source},
            is_user_action=True,
        )

    @staticmethod
    def transactions_imported(
        total_count: int,
        imported_count: int,
        skipped_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_IMPORTED,
            severity=AuditSeverity.WARNING if skipped_count else AuditSeverity.INFO,
            entity_type="transaction",
            description=(
                f"Imported {imported_count} of {total_count} transactions"
                f" ({skipped_count} skipped)"
            ),
            details={
                "total_count": total_count,
                "imported_count": imported_count,
                "skipped_count": skipped_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(transaction_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            description="Transaction deleted and its balance effect reversed",
            is_user_action=True,
        )

    @staticmethod
    def rule_added(rule_id: UUID, name: str, frequency: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_ADDED,
            entity_type="rule",
            entity_id=rule_id,
            description=f"Recurring rule added: {name} ({frequency})",
            details={"name": name, "frequency": frequency},
            is_user_action=True,
        )

    @staticmethod
    def rule_updated(rule_id: UUID, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_UPDATED,
            entity_type="rule",
            entity_id=rule_id,
            description=f"Recurring rule updated: {', '.join(fields) or 'no fields'}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def rule_deleted(rule_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_DELETED,
            entity_type="rule",
            entity_id=rule_id,
            description="Recurring rule deleted",
            is_user_action=True,
        )

    @staticmethod
    def settings_updated(fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTINGS_UPDATED,
            entity_type="settings",
            description=f"Settings updated: {', '.join(fields) or 'no fields'}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def snapshot_recomputed(
        total_balance: str,
        daily_allowance: str,
        safety_level: str,
        days_until_payday: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SNAPSHOT_RECOMPUTED,
            severity=AuditSeverity.DEBUG,
            description=f"Snapshot recomputed: {safety_level}",
            details={
                "total_balance": total_balance,
                "daily_allowance": daily_allowance,
                "safety_level": safety_level,
                "days_until_payday": days_until_payday,
            },
        )

    @staticmethod
    def storage_error(operation: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Storage operation failed: {operation}",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def validation_failed(operation: str, error_message: str) -> AuditEvent:
        """A write rejected because the merged entity failed validation."""
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            description=f"Rejected invalid data: {operation}",
            error_message=error_message,
            details={"operation": operation},
        )
