"""Audit logging adapters."""

from idbridge.adapters.audit.repository import AuditRepository

__all__ = ["AuditRepository"]
