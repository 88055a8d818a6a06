"""Security role administration: role CRUD, seeding, default roles,
role assignment and custom permission overrides.

Administrative changes are committed first and audited afterwards, one
event per change.

Administrative rules:
- role CRUD needs ``canManageRoles``; user role/permission changes need
  ``canManageUsers``;
- without ``canManageAllFamilies`` (or the legacy system-admin role) an
  actor only administers their own family, and never system roles;
- nobody but a system admin changes their own role or overrides;
- an actor cannot hand out a special permission they do not hold (for a
  role this includes what it inherits from its parents), nor grant an
  entity cell they do not hold at ``global``.
"""
from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from familyhub.rbac.decisions import Authorizer
from familyhub.rbac.errors import (
    ConfigurationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from familyhub.rbac.grid import EffectivePrivileges
from familyhub.rbac.resolver import merge_role_chain, resolve_role_chain
from familyhub.rbac.roles import SecurityRole, apply_role_patch, build_role, build_seed_roles
from familyhub.rbac.subjects import (
    CustomPermission,
    UserAccess,
    parse_custom_permissions,
    parse_permission_key,
    upsert_custom_permission,
)
from familyhub.rbac.vocabulary import AccessLevel, SpecialPermission
from familyhub.services.audit_service import AuditEvent, AuditSink
from familyhub.services.role_store import RoleStore

logger = logging.getLogger(__name__)

_PATCHABLE_FIELDS = {
    "name",
    "description",
    "entity_privileges",
    "special_permissions",
    "parent_role_id",
    "is_default",
}
_NULLABLE_FIELDS = {"description", "parent_role_id"}


class SecurityRoleService:
    def __init__(self, store: RoleStore, audit: AuditSink | None = None) -> None:
        self.store = store
        self.audit = audit

    # ------------------------------------------------------------------
    # Authorization helpers
    # ------------------------------------------------------------------

    async def authorizer_for(self, user: UserAccess) -> Authorizer:
        roles = await self.store.load_role_chain(user.security_role_id)
        return Authorizer(user, roles)

    async def _require_special(
        self, actor: UserAccess, permission: SpecialPermission
    ) -> Authorizer:
        authz = await self.authorizer_for(actor)
        if not authz.has_special(permission):
            raise ForbiddenError()
        return authz

    @staticmethod
    def _require_family_access(authz: Authorizer, family_id: uuid.UUID | None) -> None:
        if authz.is_system_admin:
            return
        if family_id is None or family_id != authz.caller.family_id:
            raise ForbiddenError()

    @staticmethod
    def _require_not_self(authz: Authorizer, user_id: uuid.UUID) -> None:
        if authz.caller.id == user_id and not authz.is_system_admin:
            raise ForbiddenError()

    @staticmethod
    def _require_delegable(authz: Authorizer, granted: Iterable[SpecialPermission]) -> None:
        for permission in granted:
            if not authz.has_special(permission):
                raise ForbiddenError()

    def _emit(self, action: str, actor: UserAccess | None, **fields: Any) -> None:
        if self.audit is None:
            return
        try:
            self.audit.fire_and_forget(AuditEvent(
                action=action,
                actor_id=str(actor.id) if actor else None,
                actor_role=actor.role.value if actor else None,
                **fields,
            ))
        except Exception:
            logger.exception("Could not emit audit event %r", action)

    async def _chain_specials(self, role: SecurityRole) -> dict[SpecialPermission, bool]:
        """Specials *role* ends up with once its parent chain is merged in."""
        roles = await self.store.load_role_chain(role.parent_role_id)
        roles[role.id] = role
        try:
            return merge_role_chain(resolve_role_chain(role.id, roles)).special
        except ConfigurationError:
            raise ValidationError.single(
                "parent_role_id", "Role inheritance chain is corrupt"
            )

    # ------------------------------------------------------------------
    # Validation against stored state
    # ------------------------------------------------------------------

    async def _check_scope_and_name(
        self, role: SecurityRole, errors: list[dict[str, str]], *, exclude: uuid.UUID | None = None
    ) -> None:
        if not role.is_system_role and not await self.store.family_exists(role.family_id):
            errors.append({"field": "family_id", "message": "Family does not exist"})
        clashes = await self.store.find_roles(
            family_id=role.family_id,
            is_system_role=role.is_system_role,
            name=role.name,
        )
        if any(other.id != exclude for other in clashes):
            errors.append({
                "field": "name",
                "message": f"A role named {role.name!r} already exists in this scope",
            })

    async def _check_parent(self, role: SecurityRole, errors: list[dict[str, str]]) -> None:
        if role.parent_role_id is None:
            return
        parent = await self.store.get_role(role.parent_role_id)
        if parent is None:
            errors.append({"field": "parent_role_id", "message": "Parent role does not exist"})
            return
        if not parent.is_system_role and parent.family_id != role.family_id:
            errors.append({
                "field": "parent_role_id",
                "message": "Parent role must be a system role or belong to the same family",
            })
            return
        ancestors = await self.store.load_role_chain(parent.id)
        if role.id in ancestors:
            errors.append({
                "field": "parent_role_id",
                "message": "Parent role would create an inheritance cycle",
            })

    # ------------------------------------------------------------------
    # Role CRUD
    # ------------------------------------------------------------------

    async def create_role(
        self,
        actor: UserAccess,
        *,
        name: Any,
        description: str | None = None,
        family_id: uuid.UUID | None = None,
        is_system_role: bool = False,
        is_default: bool = False,
        entity_privileges: Any = None,
        special_permissions: Any = None,
        parent_role_id: uuid.UUID | None = None,
    ) -> SecurityRole:
        authz = await self._require_special(actor, SpecialPermission.MANAGE_ROLES)
        if is_system_role:
            if not authz.is_system_admin:
                raise ForbiddenError()
        else:
            if family_id is None:
                family_id = actor.family_id
            self._require_family_access(authz, family_id)

        role = build_role(
            name=name,
            description=description,
            family_id=family_id,
            is_system_role=is_system_role,
            entity_privileges=entity_privileges,
            special_permissions=special_permissions,
            parent_role_id=parent_role_id,
            created_by=actor.id,
        )
        errors: list[dict[str, str]] = []
        await self._check_scope_and_name(role, errors)
        await self._check_parent(role, errors)
        if errors:
            raise ValidationError(errors)
        granted = await self._chain_specials(role)
        self._require_delegable(authz, [sp for sp, v in granted.items() if v])

        await self.store.create_role(role)
        if is_default:
            await self.store.set_default_role(role.family_id, role.id)
            role = dataclasses.replace(role, is_default=True)
        await self.store.commit()

        logger.info("Security role %s (%r) created by %s", role.id, role.name, actor.id)
        self._emit(
            "security_role.create",
            actor,
            family_id=str(role.family_id) if role.family_id else None,
            target_role_id=str(role.id),
            after=role.to_dict(),
        )
        return role

    async def update_role(
        self, actor: UserAccess, role_id: uuid.UUID, patch: Mapping[str, Any]
    ) -> SecurityRole:
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise ValidationError([
                {"field": f, "message": "Field cannot be changed"} for f in sorted(unknown)
            ])
        nulls = sorted(f for f, v in patch.items() if v is None and f not in _NULLABLE_FIELDS)
        if nulls:
            raise ValidationError([
                {"field": f, "message": "Field cannot be null"} for f in nulls
            ])

        role = await self.store.get_role(role_id)
        if role is None:
            raise NotFoundError("Security role")

        authz = await self._require_special(actor, SpecialPermission.MANAGE_ROLES)
        if role.is_system_role:
            if not authz.is_system_admin:
                raise ForbiddenError()
        else:
            self._require_family_access(authz, role.family_id)

        changes = dict(patch)
        make_default = changes.pop("is_default", None)
        if make_default is False:
            changes["is_default"] = False

        updated = apply_role_patch(role, updated_by=actor.id, **changes)

        errors: list[dict[str, str]] = []
        if updated.name != role.name:
            await self._check_scope_and_name(updated, errors, exclude=role.id)
        if updated.parent_role_id != role.parent_role_id:
            await self._check_parent(updated, errors)
        if errors:
            raise ValidationError(errors)

        if "parent_role_id" in changes or "special_permissions" in changes:
            before = await self._chain_specials(role)
            after = await self._chain_specials(updated)
            self._require_delegable(
                authz, [sp for sp, v in after.items() if v and not before[sp]]
            )

        await self.store.update_role(updated)
        if make_default and not role.is_default:
            await self.store.set_default_role(updated.family_id, updated.id)
            updated = dataclasses.replace(updated, is_default=True)
        await self.store.commit()

        self._emit(
            "security_role.update",
            actor,
            family_id=str(role.family_id) if role.family_id else None,
            target_role_id=str(role.id),
            before=role.to_dict(),
            after=updated.to_dict(),
        )
        return updated

    async def delete_role(self, actor: UserAccess, role_id: uuid.UUID) -> None:
        role = await self.store.get_role(role_id)
        if role is None:
            raise NotFoundError("Security role")

        authz = await self._require_special(actor, SpecialPermission.MANAGE_ROLES)
        if role.is_system_role:
            raise ForbiddenError()
        self._require_family_access(authz, role.family_id)

        if role.is_default:
            raise ConflictError("Cannot delete the family's default role")
        assigned = await self.store.count_role_assignments(role.id)
        if assigned:
            raise ConflictError(
                f"Cannot delete role: {assigned} user(s) are currently assigned to it"
            )
        children = await self.store.find_roles(parent_role_id=role.id)
        if children:
            raise ConflictError(
                f"Cannot delete role: {len(children)} role(s) inherit from it"
            )

        await self.store.delete_role(role.id)
        await self.store.commit()

        logger.info("Security role %s (%r) deleted by %s", role.id, role.name, actor.id)
        self._emit(
            "security_role.delete",
            actor,
            family_id=str(role.family_id) if role.family_id else None,
            target_role_id=str(role.id),
            before=role.to_dict(),
        )

    async def get_role(self, actor: UserAccess, role_id: uuid.UUID) -> SecurityRole:
        role = await self.store.get_role(role_id)
        if role is None:
            raise NotFoundError("Security role")
        authz = await self._require_special(actor, SpecialPermission.MANAGE_ROLES)
        if not role.is_system_role:
            self._require_family_access(authz, role.family_id)
        return role

    async def list_roles(self, actor: UserAccess, *, system_only: bool = False) -> list[SecurityRole]:
        authz = await self._require_special(actor, SpecialPermission.MANAGE_ROLES)
        system_roles = await self.store.find_roles(is_system_role=True)
        if system_only:
            return system_roles
        if authz.is_system_admin:
            family_roles = await self.store.find_roles(is_system_role=False)
        elif actor.family_id is not None:
            family_roles = await self.store.find_roles(
                family_id=actor.family_id, is_system_role=False
            )
        else:
            family_roles = []
        return system_roles + family_roles

    # ------------------------------------------------------------------
    # Seeding and default roles
    # ------------------------------------------------------------------

    async def seed_system_roles(self, actor: UserAccess | None = None) -> list[SecurityRole]:
        """Create the four platform roles once.  Later calls are no-ops."""
        if actor is not None:
            authz = await self.authorizer_for(actor)
            if not authz.is_system_admin:
                raise ForbiddenError()

        if await self.store.find_roles(is_system_role=True):
            return []

        roles = build_seed_roles(created_by=actor.id if actor else None)
        for role in roles:
            await self.store.create_role(role)
        await self.store.commit()

        logger.info("Seeded %d system security roles", len(roles))
        self._emit(
            "security_role.seed",
            actor,
            after={"roles": [r.name for r in roles]},
        )
        return roles

    async def get_default_role(self, family_id: uuid.UUID | None) -> SecurityRole | None:
        """The family's default role, else the platform default, else None.

        ``None`` means new members are authorised from the legacy table.
        """
        if family_id is not None:
            family_defaults = await self.store.find_roles(family_id=family_id, is_default=True)
            if family_defaults:
                return family_defaults[0]
        system_defaults = await self.store.find_roles(is_system_role=True, is_default=True)
        return system_defaults[0] if system_defaults else None

    async def apply_default_role(self, user_id: uuid.UUID) -> UserAccess:
        """Give a newly joined member their family's default role."""
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("User")
        default = await self.get_default_role(user.family_id)
        if default is None:
            logger.info(
                "No default security role for family %s; user %s stays on the legacy table",
                user.family_id,
                user.id,
            )
            updated = user.replace(security_role_id=None)
        else:
            updated = user.replace(security_role_id=default.id)
        await self.store.update_user(updated)
        await self.store.commit()

        self._emit(
            "security_role.default_assign",
            None,
            family_id=str(user.family_id) if user.family_id else None,
            target_user_id=str(user.id),
            target_role_id=str(default.id) if default else None,
        )
        return updated

    async def change_family(
        self,
        user_id: uuid.UUID,
        family_id: uuid.UUID | None,
        *,
        actor: UserAccess | None = None,
    ) -> UserAccess:
        """Move a user to *family_id*, or out of any family when it is None.

        A family-scoped or default role is swapped for the new family's
        default. An explicitly assigned system role is kept. Overrides
        granted inside the old family are dropped.
        """
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("User")
        if family_id is not None and not await self.store.family_exists(family_id):
            raise ValidationError.single("family_id", "Family does not exist")
        if family_id == user.family_id:
            return user

        role_id = user.security_role_id
        current = await self.store.get_role(role_id) if role_id else None
        if current is None or not current.is_system_role or current.is_default:
            default = await self.get_default_role(family_id)
            role_id = default.id if default else None

        updated = user.replace(family_id=family_id, security_role_id=role_id, custom_permissions=())
        await self.store.update_user(updated)
        await self.store.commit()

        logger.info(
            "User %s moved from family %s to %s (security role %s)",
            user.id, user.family_id, family_id, role_id,
        )
        self._emit(
            "security_role.family_change",
            actor,
            family_id=str(family_id) if family_id else None,
            target_user_id=str(user.id),
            target_role_id=str(role_id) if role_id else None,
            before={
                "family_id": str(user.family_id) if user.family_id else None,
                "security_role_id": str(user.security_role_id) if user.security_role_id else None,
                "custom_permissions": [p.to_dict() for p in user.custom_permissions],
            },
            after={
                "family_id": str(family_id) if family_id else None,
                "security_role_id": str(role_id) if role_id else None,
                "custom_permissions": [],
            },
        )
        return updated

    # ------------------------------------------------------------------
    # Role assignment
    # ------------------------------------------------------------------

    async def _load_managed_user(self, actor: UserAccess, user_id: uuid.UUID) -> tuple[Authorizer, UserAccess]:
        authz = await self._require_special(actor, SpecialPermission.MANAGE_USERS)
        self._require_not_self(authz, user_id)
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("User")
        self._require_family_access(authz, user.family_id)
        return authz, user

    async def assign_role(
        self, actor: UserAccess, user_id: uuid.UUID, role_id: uuid.UUID
    ) -> UserAccess:
        authz, user = await self._load_managed_user(actor, user_id)

        role = await self.store.get_role(role_id)
        if role is None:
            raise NotFoundError("Security role")
        if not role.is_system_role and role.family_id != user.family_id:
            raise ValidationError.single(
                "security_role_id", "Role belongs to a different family than the user"
            )

        chain_roles = await self.store.load_role_chain(role.id)
        try:
            granted = merge_role_chain(resolve_role_chain(role.id, chain_roles)).special
        except ConfigurationError:
            raise ValidationError.single(
                "security_role_id", "Role inheritance chain is corrupt"
            )
        self._require_delegable(authz, [sp for sp, v in granted.items() if v])

        updated = user.replace(security_role_id=role.id)
        await self.store.update_user(updated)
        await self.store.commit()

        self._emit(
            "security_role.assign",
            actor,
            family_id=str(user.family_id) if user.family_id else None,
            target_user_id=str(user.id),
            target_role_id=str(role.id),
            before={"security_role_id": str(user.security_role_id) if user.security_role_id else None},
            after={"security_role_id": str(role.id)},
        )
        return updated

    async def remove_role(self, actor: UserAccess, user_id: uuid.UUID) -> UserAccess:
        _, user = await self._load_managed_user(actor, user_id)
        updated = user.replace(security_role_id=None)
        await self.store.update_user(updated)
        await self.store.commit()

        self._emit(
            "security_role.remove",
            actor,
            family_id=str(user.family_id) if user.family_id else None,
            target_user_id=str(user.id),
            target_role_id=str(user.security_role_id) if user.security_role_id else None,
            before={"security_role_id": str(user.security_role_id) if user.security_role_id else None},
            after={"security_role_id": None},
        )
        return updated

    # ------------------------------------------------------------------
    # Custom permission overrides
    # ------------------------------------------------------------------

    @staticmethod
    def _require_grantable(authz: Authorizer, overrides: Iterable[CustomPermission]) -> None:
        """Grants are capped at what the actor holds: the special itself, or
        the entity cell at ``global``. Denials are always allowed.
        """
        for override in overrides:
            target = override.target
            if not override.granted or target is None:
                continue
            if isinstance(target, SpecialPermission):
                if not authz.has_special(target):
                    raise ForbiddenError()
            else:
                entity, privilege = target
                if authz.granted_level(privilege, entity) is not AccessLevel.GLOBAL:
                    raise ForbiddenError()

    async def set_custom_permission(
        self, actor: UserAccess, user_id: uuid.UUID, permission: str, granted: bool
    ) -> UserAccess:
        authz, user = await self._load_managed_user(actor, user_id)
        if parse_permission_key(permission) is None:
            raise ValidationError.single("permission", f"Unknown permission key {permission!r}")

        overrides = upsert_custom_permission(user.custom_permissions, permission, granted)
        self._require_grantable(authz, overrides[-1:])

        updated = user.replace(custom_permissions=overrides)
        await self.store.update_user(updated)
        await self.store.commit()

        self._emit(
            f"permission.{'grant' if granted else 'revoke'}",
            actor,
            family_id=str(user.family_id) if user.family_id else None,
            target_user_id=str(user.id),
            before={"custom_permissions": [p.to_dict() for p in user.custom_permissions]},
            after={"custom_permissions": [p.to_dict() for p in overrides]},
        )
        return updated

    async def replace_custom_permissions(
        self, actor: UserAccess, user_id: uuid.UUID, entries: Iterable[Any]
    ) -> UserAccess:
        authz, user = await self._load_managed_user(actor, user_id)
        overrides = parse_custom_permissions(entries)
        self._require_grantable(authz, overrides)

        updated = user.replace(custom_permissions=overrides)
        await self.store.update_user(updated)
        await self.store.commit()

        self._emit(
            "permission.replace",
            actor,
            family_id=str(user.family_id) if user.family_id else None,
            target_user_id=str(user.id),
            before={"custom_permissions": [p.to_dict() for p in user.custom_permissions]},
            after={"custom_permissions": [p.to_dict() for p in overrides]},
        )
        return updated

    # ------------------------------------------------------------------
    # Read-side
    # ------------------------------------------------------------------

    async def get_user_permissions(
        self, actor: UserAccess, user_id: uuid.UUID
    ) -> tuple[UserAccess, SecurityRole | None, EffectivePrivileges]:
        """A user's assigned role and effective privileges.

        Users may always view their own; otherwise ``canManageUsers`` within
        the user's family is required.
        """
        if actor.id != user_id:
            await self._load_managed_user(actor, user_id)
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("User")

        role = None
        if user.security_role_id is not None:
            role = await self.store.get_role(user.security_role_id)
        authz = await self.authorizer_for(user)
        return user, role, authz.effective
