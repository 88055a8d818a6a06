"""
Legacy Role Permission Table.

The coarse four-valued role (guest / family_member / family_admin /
system_admin) predates security roles and is still carried on every user.
Users without a security role are authorised from this table.

Capabilities with a special-permission equivalent are *generated* from the
four seed roles, so the two tables cannot drift.  The remaining
capabilities have no granular counterpart and are listed explicitly below.
"""
from __future__ import annotations

from familyhub.rbac.roles import (
    FAMILY_ADMINISTRATOR,
    FAMILY_MEMBER,
    GUEST,
    SYSTEM_ADMINISTRATOR,
    SecurityRole,
    build_seed_role,
)
from familyhub.rbac.vocabulary import LegacyRole, SpecialPermission

# ---------------------------------------------------------------------------
# Coarse role -> seed security role
# ---------------------------------------------------------------------------

LEGACY_SEED_ROLES: dict[LegacyRole, str] = {
    LegacyRole.SYSTEM_ADMIN: SYSTEM_ADMINISTRATOR,
    LegacyRole.FAMILY_ADMIN: FAMILY_ADMINISTRATOR,
    LegacyRole.FAMILY_MEMBER: FAMILY_MEMBER,
    LegacyRole.GUEST: GUEST,
}

_BASELINES: dict[LegacyRole, SecurityRole] = {
    legacy: build_seed_role(name) for legacy, name in LEGACY_SEED_ROLES.items()
}


# ---------------------------------------------------------------------------
# Capabilities backed by a special permission (generated view)
# ---------------------------------------------------------------------------

SPECIAL_EQUIVALENTS: dict[str, SpecialPermission] = {
    "canManageAllFamilies": SpecialPermission.MANAGE_ALL_FAMILIES,
    "canManageUsers": SpecialPermission.MANAGE_USERS,
    "canManageFamily": SpecialPermission.MANAGE_FAMILY,
    "canViewAuditLogs": SpecialPermission.VIEW_AUDIT_LOGS,
    "canExportData": SpecialPermission.EXPORT_ALL,
    "canApproveContent": SpecialPermission.APPROVE_CONTENT,
    "canAccessDashboard": SpecialPermission.ACCESS_ADMIN,
}


# ---------------------------------------------------------------------------
# Legacy-only capabilities (no granular equivalent)
# ---------------------------------------------------------------------------

LEGACY_ONLY_PERMISSIONS: dict[LegacyRole, set[str]] = {
    LegacyRole.FAMILY_ADMIN: {
        "canManageMembers",
        "canViewFamilyAuditLogs",
        "canExportFamilyData",
        "canEditFamilyTree",
    },
    LegacyRole.FAMILY_MEMBER: {
        "canViewFamily",
        "canSubmitContent",
        "canEditOwnContent",
        "canViewFamilyTree",
        "canAddChildren",
    },
    LegacyRole.GUEST: {
        "canViewPublicFamilies",
        "canViewPublicContent",
    },
}

_LEGACY_ONLY_NAMES: set[str] = {
    "canApprovePublicFamilies",
    "canDeleteData",
}.union(*LEGACY_ONLY_PERMISSIONS.values())

# System admin holds every legacy capability.
LEGACY_ONLY_PERMISSIONS[LegacyRole.SYSTEM_ADMIN] = set(_LEGACY_ONLY_NAMES)

ALL_LEGACY_CAPABILITIES: list[str] = sorted(set(SPECIAL_EQUIVALENTS) | _LEGACY_ONLY_NAMES)


def _build_table() -> dict[LegacyRole, dict[str, bool]]:
    table: dict[LegacyRole, dict[str, bool]] = {}
    for legacy, baseline in _BASELINES.items():
        specials = baseline.special_permissions
        row = {name: specials[sp] for name, sp in SPECIAL_EQUIVALENTS.items()}
        for name in _LEGACY_ONLY_NAMES:
            row[name] = name in LEGACY_ONLY_PERMISSIONS.get(legacy, set())
        table[legacy] = row
    return table


ROLE_PERMISSIONS: dict[LegacyRole, dict[str, bool]] = _build_table()

VALID_LEGACY_ROLES: list[str] = sorted(r.value for r in LegacyRole)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _coerce(role: LegacyRole | str | None) -> LegacyRole | None:
    if isinstance(role, LegacyRole):
        return role
    try:
        return LegacyRole(role)
    except ValueError:
        return None


def has_legacy_permission(role: LegacyRole | str | None, capability: str) -> bool:
    """Look up a coarse-role capability; unknown roles or names are False."""
    legacy = _coerce(role)
    if legacy is None:
        return False
    return ROLE_PERMISSIONS[legacy].get(capability, False)


def legacy_baseline(role: LegacyRole | str | None) -> SecurityRole:
    """Seed role whose grid and specials stand in for a coarse role.

    Unrecognised roles get the Guest baseline.
    """
    legacy = _coerce(role)
    return _BASELINES[legacy if legacy is not None else LegacyRole.GUEST]
