"""Audit logging package."""

from gull.audit.logger import AuditLogger, create_correlation_id

__all__ = ["AuditLogger", "create_correlation_id"]
