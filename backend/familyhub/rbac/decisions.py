"""
Authorization Decision Engine and Scope-to-Filter Translator.

Both consume the same granted level for (entity kind, privilege), so a
single-record check and a list query can never disagree:

    grant   | can_perform allows targets scoped   | build_scope_filter
    --------+-------------------------------------+--------------------------
    none    | (nothing)                           | Forbidden
    user    | owned by caller                     | OwnedBy(caller)
    family  | owned by caller, or same family     | WithinFamily(caller family)
    global  | anything                            | Unrestricted

A ``read`` of a publicly visible target is always allowed.  System admins
(legacy role or the ``canManageAllFamilies`` special permission) bypass the
grid entirely.

Outcomes are return values, never exceptions.  If the caller's role data is
corrupt the decision fails closed.
"""
from __future__ import annotations

import dataclasses
import logging
import uuid
from typing import Any

from familyhub.rbac.errors import ConfigurationError
from familyhub.rbac.grid import EffectivePrivileges
from familyhub.rbac.resolver import RoleMap, resolve_effective_privileges
from familyhub.rbac.subjects import TargetResource, UserAccess
from familyhub.rbac.vocabulary import AccessLevel, EntityKind, PrivilegeKind, SpecialPermission

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Filter specs
# ---------------------------------------------------------------------------


class ScopeFilter:
    """Query constraint derived from a caller's granted access level."""

    def as_query(self) -> dict[str, Any] | None:
        """Document-store filter; ``None`` means "match nothing"."""
        raise NotImplementedError


@dataclasses.dataclass(frozen=True)
class Unrestricted(ScopeFilter):
    def as_query(self) -> dict[str, Any]:
        return {}


@dataclasses.dataclass(frozen=True)
class OwnedBy(ScopeFilter):
    user_id: uuid.UUID

    def as_query(self) -> dict[str, Any]:
        return {"owner_id": self.user_id}


@dataclasses.dataclass(frozen=True)
class WithinFamily(ScopeFilter):
    family_id: uuid.UUID

    def as_query(self) -> dict[str, Any]:
        return {"family_id": self.family_id}


@dataclasses.dataclass(frozen=True)
class Forbidden(ScopeFilter):
    def as_query(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Target scope
# ---------------------------------------------------------------------------


def target_scope(caller: UserAccess, target: TargetResource) -> AccessLevel:
    """Narrowest relationship between *caller* and *target*."""
    if target.owner_id is not None and target.owner_id == caller.id:
        return AccessLevel.USER
    if caller.family_id is not None and target.family_id == caller.family_id:
        return AccessLevel.FAMILY
    return AccessLevel.GLOBAL


# ---------------------------------------------------------------------------
# Authorizer
# ---------------------------------------------------------------------------


class Authorizer:
    """Resolves a caller once and answers any number of checks."""

    def __init__(self, caller: UserAccess, roles: RoleMap | None = None) -> None:
        self.caller = caller
        self.effective = self._resolve(caller, roles)
        self.is_system_admin = caller.is_system_admin or self.effective.has_special(
            SpecialPermission.MANAGE_ALL_FAMILIES
        )

    @staticmethod
    def _resolve(caller: UserAccess, roles: RoleMap | None) -> EffectivePrivileges:
        try:
            return resolve_effective_privileges(caller, roles)
        except ConfigurationError as exc:
            logger.error(
                "Privilege resolution failed for user %s, denying all access: %s",
                caller.id,
                exc,
            )
            return EffectivePrivileges.nothing()

    def granted_level(self, privilege: PrivilegeKind, entity_kind: EntityKind) -> AccessLevel:
        if self.is_system_admin:
            return AccessLevel.GLOBAL
        return self.effective.level(entity_kind, privilege)

    def can_perform(
        self, privilege: PrivilegeKind, entity_kind: EntityKind, target: TargetResource
    ) -> bool:
        if self.is_system_admin:
            return True
        if privilege is PrivilegeKind.READ and target.is_publicly_visible:
            return True
        granted = self.granted_level(privilege, entity_kind)
        if granted is AccessLevel.NONE:
            return False
        return granted.satisfies(target_scope(self.caller, target))

    def scope_filter(self, privilege: PrivilegeKind, entity_kind: EntityKind) -> ScopeFilter:
        granted = self.granted_level(privilege, entity_kind)
        if granted is AccessLevel.GLOBAL:
            return Unrestricted()
        if granted is AccessLevel.FAMILY and self.caller.family_id is not None:
            return WithinFamily(self.caller.family_id)
        if granted in (AccessLevel.FAMILY, AccessLevel.USER):
            return OwnedBy(self.caller.id)
        return Forbidden()

    def has_special(self, permission: SpecialPermission) -> bool:
        return self.is_system_admin or self.effective.has_special(permission)


# ---------------------------------------------------------------------------
# Functional entry points
# ---------------------------------------------------------------------------


def can_perform(
    caller: UserAccess,
    privilege: PrivilegeKind,
    entity_kind: EntityKind,
    target: TargetResource,
    roles: RoleMap | None = None,
) -> bool:
    return Authorizer(caller, roles).can_perform(privilege, entity_kind, target)


def build_scope_filter(
    caller: UserAccess,
    privilege: PrivilegeKind,
    entity_kind: EntityKind,
    roles: RoleMap | None = None,
) -> ScopeFilter:
    return Authorizer(caller, roles).scope_filter(privilege, entity_kind)


def has_special_permission(
    caller: UserAccess, permission: SpecialPermission, roles: RoleMap | None = None
) -> bool:
    return Authorizer(caller, roles).has_special(permission)
