"""
Shared vocabulary for the security-privilege engine.

Access levels (ordered):
- none:   no access
- user:   only records owned by the caller
- family: every record in the caller's family
- global: every record on the platform

Privilege kinds and entity kinds are closed sets.  Adding an entity kind
automatically gives every existing role a ``none`` row for it.
"""
from __future__ import annotations

import enum


class AccessLevel(str, enum.Enum):
    NONE = "none"
    USER = "user"
    FAMILY = "family"
    GLOBAL = "global"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def satisfies(self, required: AccessLevel) -> bool:
        """True when a grant at this level covers a requirement of *required*."""
        return self.rank >= required.rank


_LEVEL_RANK: dict[AccessLevel, int] = {
    AccessLevel.NONE: 0,
    AccessLevel.USER: 1,
    AccessLevel.FAMILY: 2,
    AccessLevel.GLOBAL: 3,
}


class PrivilegeKind(str, enum.Enum):
    CREATE = "create"
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    ASSIGN = "assign"
    SHARE = "share"
    APPROVE = "approve"
    EXPORT = "export"
    IMPORT = "import"


class EntityKind(str, enum.Enum):
    USER = "user"
    FAMILY = "family"
    FAMILY_MEMBER = "family_member"
    EVENT = "event"
    NEWS = "news"
    GALLERY = "gallery"
    PHOTO = "photo"
    SERVICE = "service"
    SUBMISSION = "submission"
    APPROVAL = "approval"
    SETTINGS = "settings"
    AUDIT_LOG = "audit_log"
    ENTITY = "entity"
    ACTIVITY = "activity"
    LOCATION = "location"
    DOCUMENT = "document"


class SpecialPermission(str, enum.Enum):
    """Global yes/no capabilities layered on top of the privilege grid."""

    MANAGE_ROLES = "canManageRoles"
    MANAGE_USERS = "canManageUsers"
    MANAGE_FAMILY = "canManageFamily"
    VIEW_AUDIT_LOGS = "canViewAuditLogs"
    EXPORT_ALL = "canExportAll"
    IMPORT_DATA = "canImportData"
    MANAGE_INTEGRATIONS = "canManageIntegrations"
    ACCESS_ADMIN = "canAccessAdmin"
    APPROVE_CONTENT = "canApproveContent"
    MANAGE_SETTINGS = "canManageSettings"
    SEND_NOTIFICATIONS = "canSendNotifications"
    MANAGE_BILLING = "canManageBilling"
    # Cross-family super-admin: bypasses every grid check.
    MANAGE_ALL_FAMILIES = "canManageAllFamilies"


class LegacyRole(str, enum.Enum):
    """The original coarse role carried on every user record."""

    GUEST = "guest"
    FAMILY_MEMBER = "family_member"
    FAMILY_ADMIN = "family_admin"
    SYSTEM_ADMIN = "system_admin"


ACCESS_LEVELS: tuple[AccessLevel, ...] = tuple(AccessLevel)
PRIVILEGE_KINDS: tuple[PrivilegeKind, ...] = tuple(PrivilegeKind)
ENTITY_KINDS: tuple[EntityKind, ...] = tuple(EntityKind)
SPECIAL_PERMISSIONS: tuple[SpecialPermission, ...] = tuple(SpecialPermission)
