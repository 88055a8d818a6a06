"""
Role Resolver: computes a user's effective privilege grid.

Resolution never touches storage.  Callers pre-load the user's security
role and all of its ancestors into a plain ``{role_id: SecurityRole}`` map
(see ``RoleStore.load_role_chain``) and pass it in.

1. No security role assigned -> legacy baseline for the coarse role.
2. Dangling security role id, or a family role of another family ->
   warning, then as (1).
3. Walk the parent chain; a cycle raises ``ConfigurationError``.
4. Merge root-to-leaf: the nearest role declaring an entity row (or a
   special flag) wins.
5. Apply custom overrides: grant -> global / True, deny -> none / False.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping

from familyhub.rbac.errors import ConfigurationError
from familyhub.rbac.grid import EffectivePrivileges, PrivilegeGrid
from familyhub.rbac.legacy import legacy_baseline
from familyhub.rbac.roles import SecurityRole
from familyhub.rbac.subjects import CustomPermission, UserAccess
from familyhub.rbac.vocabulary import AccessLevel, EntityKind, PrivilegeKind, SpecialPermission

logger = logging.getLogger(__name__)

RoleMap = Mapping[uuid.UUID, SecurityRole]


def resolve_role_chain(role_id: uuid.UUID, roles: RoleMap) -> list[SecurityRole]:
    """Return ``[role, parent, grandparent, ...]`` for *role_id*.

    A missing ancestor ends the chain early.  Revisiting a role id means the
    stored inheritance graph has a cycle.
    """
    chain: list[SecurityRole] = []
    visited: set[uuid.UUID] = set()
    current: uuid.UUID | None = role_id
    while current is not None:
        if current in visited:
            raise ConfigurationError(
                f"Security role inheritance cycle detected at role {current}"
            )
        visited.add(current)
        role = roles.get(current)
        if role is None:
            if chain:
                logger.warning(
                    "Security role %s references missing parent role %s; "
                    "treating it as the root of its chain",
                    chain[-1].id,
                    current,
                )
            break
        chain.append(role)
        current = role.parent_role_id
    return chain


def merge_role_chain(chain: list[SecurityRole]) -> EffectivePrivileges:
    """Merge a leaf-first chain; descendants override ancestors."""
    rows: dict[EntityKind, dict[PrivilegeKind, AccessLevel]] = {}
    specials: dict[SpecialPermission, bool] = {}
    for role in reversed(chain):
        for entity in role.declared_entities:
            rows[entity] = role.entity_privileges.row(entity)
        specials.update(role.declared_special_permissions)
    return EffectivePrivileges(PrivilegeGrid.from_rows(rows), specials)


def apply_custom_permissions(
    effective: EffectivePrivileges, overrides: Iterable[CustomPermission]
) -> EffectivePrivileges:
    grid = effective.grid
    specials = dict(effective.special)
    for override in overrides:
        target = override.target
        if target is None:
            logger.debug("Ignoring unknown custom permission %r", override.permission)
            continue
        if isinstance(target, SpecialPermission):
            specials[target] = override.granted
        else:
            entity, privilege = target
            level = AccessLevel.GLOBAL if override.granted else AccessLevel.NONE
            grid = grid.with_cell(entity, privilege, level)
    return EffectivePrivileges(grid, specials)


def _legacy_privileges(user: UserAccess) -> EffectivePrivileges:
    baseline = legacy_baseline(user.role)
    return EffectivePrivileges(baseline.entity_privileges, baseline.special_permissions)


def resolve_effective_privileges(
    user: UserAccess, roles: RoleMap | None = None
) -> EffectivePrivileges:
    """Compute the total effective grid and special map for *user*.

    Raises ``ConfigurationError`` on an inheritance cycle.
    """
    roles = roles or {}
    if user.security_role_id is None:
        return _legacy_privileges(user)

    if user.security_role_id not in roles:
        logger.warning(
            "User %s references missing security role %s; "
            "falling back to legacy role %r",
            user.id,
            user.security_role_id,
            user.role.value,
        )
        return _legacy_privileges(user)

    role = roles[user.security_role_id]
    if not role.is_system_role and role.family_id != user.family_id:
        logger.warning(
            "User %s (family %s) references security role %s of family %s; "
            "falling back to legacy role %r",
            user.id,
            user.family_id,
            role.id,
            role.family_id,
            user.role.value,
        )
        return _legacy_privileges(user)

    chain = resolve_role_chain(user.security_role_id, roles)
    merged = merge_role_chain(chain)
    return apply_custom_permissions(merged, user.custom_permissions)
