"""
Security Infrastructure

Authorization and audit logging components.
"""

from shared.security.audit import (
    AuditAction,
    AuditEntityType,
    AuditLogEntry,
    AuditLogModel,
    AuditQuery,
    AuditRecorder,
)
from shared.security.rbac import RBACService, UserRoleModel

__all__ = [
    "AuditAction",
    "AuditEntityType",
    "AuditLogEntry",
    "AuditLogModel",
    "AuditQuery",
    "AuditRecorder",
    "RBACService",
    "UserRoleModel",
]
