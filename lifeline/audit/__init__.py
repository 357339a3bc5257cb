"""Audit logging package."""

from lifeline.audit.logger import AuditLogger, configure_logging

__all__ = ["AuditLogger", "configure_logging"]
