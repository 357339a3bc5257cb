"""Validation package."""

from lifeline.validation.validator import TransactionBatchValidator, duplicate_key

__all__ = ["TransactionBatchValidator", "duplicate_key"]
