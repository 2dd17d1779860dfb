"""Per-session persistence collaborators."""

from streamgate.session.audit import AuditLog, JsonlAuditLog

__all__ = ["AuditLog", "JsonlAuditLog"]
