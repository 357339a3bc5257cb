"""Tests for the audit logger."""

from decimal import Decimal
from uuid import uuid4

import pytest

from lifeline.audit import AuditLogger
from lifeline.models.audit import AuditEventBuilder, AuditEventType, AuditSeverity


class TestAuditLogger:
    """Tests for local audit logging and history."""

    @pytest.mark.asyncio
    async def test_events_are_kept_newest_first(self):
        logger = AuditLogger()
        account_id = uuid4()

        await logger.log_account_created(account_id, "Bank", "bank")
        await logger.log_account_updated(account_id, {"name", "balance"})

        events = logger.recent_events
        assert [e.event_type for e in events] == [
            AuditEventType.ACCOUNT_UPDATED,
            AuditEventType.ACCOUNT_CREATED,
        ]
        assert events[0].details["fields"] == ["balance", "name"]

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        logger = AuditLogger(history_size=3)
        for _ in range(5):
            await logger.log_rule_deleted(uuid4())
        assert len(logger.recent_events) == 3

    @pytest.mark.asyncio
    async def test_history_for_entity(self):
        logger = AuditLogger()
        rule_id = uuid4()
        await logger.log_rule_added(rule_id, "Rent", "monthly")
        await logger.log_transaction_deleted(uuid4())
        await logger.log_rule_updated(rule_id, ["amount"])

        history = logger.history_for(rule_id)
        assert [e.event_type for e in history] == [
            AuditEventType.RULE_UPDATED,
            AuditEventType.RULE_ADDED,
        ]

    @pytest.mark.asyncio
    async def test_severities(self):
        logger = AuditLogger()
        event = AuditEventBuilder.snapshot_recomputed("100.00", "3.23", "danger", 31)

        assert await logger.log(event) is True
        assert event.severity is AuditSeverity.DEBUG

        await logger.log_storage_error("insert_transaction", "disk full")
        assert logger.recent_events[0].severity is AuditSeverity.ERROR

    @pytest.mark.asyncio
    async def test_amounts_are_logged_as_strings(self):
        logger = AuditLogger()
        await logger.log_transaction_added(uuid4(), "expense", Decimal("12.50"), "manual")
        assert logger.recent_events[0].details["amount"] == "12.50"

    @pytest.mark.asyncio
    async def test_validation_failure_is_a_warning(self):
        logger = AuditLogger()
        await logger.log_validation_failed("update_account", "name too short")

        event = logger.recent_events[0]
        assert event.event_type is AuditEventType.VALIDATION_FAILED
        assert event.severity is AuditSeverity.WARNING
        assert event.error_message == "name too short"
