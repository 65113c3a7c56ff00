"""
auth/permissions.py -- The permission catalog: every permission, role and grant.

This module is the single source of truth for RBAC reference data. It feeds
two consumers and nothing else:

  1. RoleStore.sync_catalog() writes it into the permissions, roles and
     role_permissions tables at startup (idempotent, additive).
  2. RolePermissionCache.load() reads the role -> permission table BACK from
     the database after that sync, so the fast-path cache always mirrors what
     the repository holds instead of a hand-copied dict.

Nothing should check ROLE_PERMISSIONS directly at request time -- go through
the AuthorizationEngine.

Layer rule: stdlib only.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class PermissionCategory(str, Enum):
    USER_MANAGEMENT = "user_management"
    CONTENT_MANAGEMENT = "content_management"
    PAYMENT_PROCESSING = "payment_processing"
    REPORTING = "reporting"
    SYSTEM_CONFIG = "system_config"


class PermissionAction(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    REJECT = "reject"
    EXPORT = "export"
    IMPORT = "import"
    ASSIGN = "assign"


@dataclass(frozen=True)
class PermissionDef:
    category: PermissionCategory
    action: PermissionAction
    description: str


_UM = PermissionCategory.USER_MANAGEMENT
_CM = PermissionCategory.CONTENT_MANAGEMENT
_PP = PermissionCategory.PAYMENT_PROCESSING
_RP = PermissionCategory.REPORTING
_SC = PermissionCategory.SYSTEM_CONFIG
_A = PermissionAction

PERMISSIONS: dict[str, PermissionDef] = {
    # User management
    "USER_READ": PermissionDef(_UM, _A.READ, "View user information"),
    "USER_CREATE": PermissionDef(_UM, _A.CREATE, "Create new users"),
    "USER_UPDATE": PermissionDef(_UM, _A.UPDATE, "Update user information"),
    "USER_DELETE": PermissionDef(_UM, _A.DELETE, "Delete users"),
    "USER_ASSIGN_ROLE": PermissionDef(_UM, _A.ASSIGN, "Assign roles to users"),
    # Content management
    "CONTENT_READ": PermissionDef(_CM, _A.READ, "View content"),
    "CONTENT_CREATE": PermissionDef(_CM, _A.CREATE, "Create new content"),
    "CONTENT_UPDATE": PermissionDef(_CM, _A.UPDATE, "Update existing content"),
    "CONTENT_DELETE": PermissionDef(_CM, _A.DELETE, "Delete content"),
    "CONTENT_APPROVE": PermissionDef(_CM, _A.APPROVE, "Approve content"),
    # Payment processing
    "PAYMENT_READ": PermissionDef(_PP, _A.READ, "View payment information"),
    "PAYMENT_CREATE": PermissionDef(_PP, _A.CREATE, "Create new payments"),
    "PAYMENT_UPDATE": PermissionDef(_PP, _A.UPDATE, "Update payment information"),
    "PAYMENT_APPROVE": PermissionDef(_PP, _A.APPROVE, "Approve payments"),
    "PAYMENT_REJECT": PermissionDef(_PP, _A.REJECT, "Reject payments"),
    # Reporting
    "REPORT_READ": PermissionDef(_RP, _A.READ, "View reports"),
    "REPORT_CREATE": PermissionDef(_RP, _A.CREATE, "Create new reports"),
    "REPORT_EXPORT": PermissionDef(_RP, _A.EXPORT, "Export reports"),
    # System configuration
    "SYSTEM_READ": PermissionDef(_SC, _A.READ, "View system configuration"),
    "SYSTEM_UPDATE": PermissionDef(_SC, _A.UPDATE, "Update system configuration"),
    "SYSTEM_IMPORT": PermissionDef(_SC, _A.IMPORT, "Import system data"),
    "SYSTEM_EXPORT": PermissionDef(_SC, _A.EXPORT, "Export system data"),
}

ROLE_DEFINITIONS: dict[str, str] = {
    "admin": "Full access to every permission",
    "supervisor": "Manages users, content, payments and reports; read-only system config",
    "staff": "Day-to-day operations with read access to users and reports",
}

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "admin": frozenset(PERMISSIONS),
    "supervisor": frozenset(
        {
            # User management (no delete)
            "USER_READ",
            "USER_CREATE",
            "USER_UPDATE",
            "USER_ASSIGN_ROLE",
            # Content management (full)
            "CONTENT_READ",
            "CONTENT_CREATE",
            "CONTENT_UPDATE",
            "CONTENT_DELETE",
            "CONTENT_APPROVE",
            # Payments (review only)
            "PAYMENT_READ",
            "PAYMENT_APPROVE",
            "PAYMENT_REJECT",
            # Reporting (full)
            "REPORT_READ",
            "REPORT_CREATE",
            "REPORT_EXPORT",
            "SYSTEM_READ",
        }
    ),
    "staff": frozenset(
        {
            "USER_READ",
            "CONTENT_READ",
            "CONTENT_CREATE",
            "CONTENT_UPDATE",
            "PAYMENT_READ",
            "PAYMENT_CREATE",
            "REPORT_READ",
        }
    ),
}
