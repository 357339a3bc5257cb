"""
Audit Logger

DESIGN DECISION: Every change to the ledger is logged.
This provides:
1. Traceability of balance changes
2. Debugging capability when a forecast looks wrong
3. A recent history the user can look through

The audit logger:
- Writes structured JSON lines through structlog
- Keeps the most recent events in memory
- Never raises (a logging failure must not undo a committed change)
"""

import logging
from collections import deque
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID

import structlog

from lifeline.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """
    Route structlog output through the standard library at the given level.

    structlog hands the rendered JSON to stdlib logging, so this is
    where the minimum level is decided.
    """
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )


class AuditLogger:
    """
    Central audit logging service.

    Args:
        history_size: How many recent events to keep in memory
    """

    def __init__(self, history_size: int = 200):
        self._logger = structlog.get_logger("lifeline.audit")
        self._history: deque[AuditEvent] = deque(maxlen=history_size)

    @property
    def recent_events(self) -> list[AuditEvent]:
        """Recent events, newest first."""
        return list(reversed(self._history))

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the event was written to the local log.
        """
        self._history.append(event)
        log_dict = event.to_log_dict()

        try:
            if event.severity is AuditSeverity.ERROR:
                self._logger.error("audit_event", **log_dict)
            elif event.severity is AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity is AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            logging.getLogger(__name__).warning("Failed to write audit event: %s", e)
            return False

        return True

    async def log_account_created(self, account_id: UUID, name: str, account_type: str) -> None:
        await self.log(AuditEventBuilder.account_created(account_id, name, account_type))

    async def log_account_updated(self, account_id: UUID, fields: Sequence[str]) -> None:
        await self.log(AuditEventBuilder.account_updated(account_id, sorted(fields)))

    async def log_account_deleted(self, account_id: UUID) -> None:
        await self.log(AuditEventBuilder.account_deleted(account_id))

    async def log_transaction_added(
        self,
        transaction_id: UUID,
        direction: str,
        amount: Decimal,
        source: str,
    ) -> None:
        """Log a single recorded transaction."""
        event = AuditEventBuilder.transaction_added(
            transaction_id=transaction_id,
            direction=direction,
            amount=str(amount),
            source=source,
        )
        await self.log(event)

    async def log_transactions_imported(
        self,
        total_count: int,
        imported_count: int,
        skipped_count: int,
    ) -> None:
        """Log the outcome of a batch import."""
        event = AuditEventBuilder.transactions_imported(
            total_count=total_count,
            imported_count=imported_count,
            skipped_count=skipped_count,
        )
        await self.log(event)

    async def log_transaction_deleted(self, transaction_id: UUID) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(transaction_id))

    async def log_rule_added(self, rule_id: UUID, name: str, frequency: str) -> None:
        await self.log(AuditEventBuilder.rule_added(rule_id, name, frequency))

    async def log_rule_updated(self, rule_id: UUID, fields: Sequence[str]) -> None:
        await self.log(AuditEventBuilder.rule_updated(rule_id, sorted(fields)))

    async def log_rule_deleted(self, rule_id: UUID) -> None:
        await self.log(AuditEventBuilder.rule_deleted(rule_id))

    async def log_settings_updated(self, fields: Sequence[str]) -> None:
        await self.log(AuditEventBuilder.settings_updated(sorted(fields)))

    async def log_snapshot_recomputed(
        self,
        total_balance: Decimal,
        daily_allowance: Decimal,
        safety_level: str,
        days_until_payday: int,
    ) -> None:
        """Log a recomputation of the derived snapshot."""
        event = AuditEventBuilder.snapshot_recomputed(
            total_balance=str(total_balance),
            daily_allowance=str(daily_allowance),
            safety_level=safety_level,
            days_until_payday=days_until_payday,
        )
        await self.log(event)

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
    ) -> None:
        """Log a storage failure that is being surfaced to the caller."""
        await self.log(AuditEventBuilder.storage_error(operation, error_message))

    async def log_validation_failed(
        self,
        operation: str,
        error_message: str,
    ) -> None:
        await self.log(AuditEventBuilder.validation_failed(operation, error_message))

    def history_for(self, entity_id: Optional[UUID]) -> list[AuditEvent]:
        """Recent events about one entity, newest first."""
        return [e for e in self.recent_events if e.entity_id == entity_id]
