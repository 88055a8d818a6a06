"""
Security Role value type, validation, and the platform seed roles.

A security role bundles a privilege grid with a set of special
permissions.  It is either a system role (usable by every family) or bound
to exactly one family, and may inherit from one parent role.

Besides the total grid, a role remembers which entity kinds and which
special permissions it *declares*: inheritance resolution needs to tell an
explicit ``none`` apart from "not specified here, ask the parent".
"""
from __future__ import annotations

import dataclasses
import types
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from familyhub.rbac.errors import ValidationError
from familyhub.rbac.grid import PrivilegeGrid
from familyhub.rbac.vocabulary import (
    ENTITY_KINDS,
    PRIVILEGE_KINDS,
    SPECIAL_PERMISSIONS,
    AccessLevel,
    EntityKind,
    PrivilegeKind,
    SpecialPermission,
)

NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500

_UNSET: Any = object()


@dataclasses.dataclass(frozen=True)
class SecurityRole:
    id: uuid.UUID
    name: str
    entity_privileges: PrivilegeGrid
    declared_entities: frozenset[EntityKind]
    declared_special_permissions: Mapping[SpecialPermission, bool]
    description: str | None = None
    family_id: uuid.UUID | None = None
    is_system_role: bool = False
    is_default: bool = False
    parent_role_id: uuid.UUID | None = None
    created_by: uuid.UUID | None = None
    updated_by: uuid.UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "declared_special_permissions",
            types.MappingProxyType(dict(self.declared_special_permissions)),
        )

    @property
    def special_permissions(self) -> dict[SpecialPermission, bool]:
        """Total special-permission map (undeclared keys read as False)."""
        declared = self.declared_special_permissions
        return {sp: declared.get(sp, False) for sp in SPECIAL_PERMISSIONS}

    @property
    def is_admin_role(self) -> bool:
        sp = self.special_permissions
        return (
            sp[SpecialPermission.MANAGE_ROLES]
            or sp[SpecialPermission.MANAGE_USERS]
            or sp[SpecialPermission.MANAGE_FAMILY]
            or sp[SpecialPermission.ACCESS_ADMIN]
        )

    def has_privilege(
        self, entity: EntityKind, privilege: PrivilegeKind, required: AccessLevel
    ) -> bool:
        """Own-grid check only; inheritance is the resolver's job."""
        return self.entity_privileges.get(entity, privilege).satisfies(required)

    # ---- storage shape ----

    def privileges_document(self) -> dict[str, dict[str, str]]:
        """Declared rows only, keyed by entity then privilege."""
        full = self.entity_privileges.to_dict()
        return {e.value: full[e.value] for e in ENTITY_KINDS if e in self.declared_entities}

    def special_permissions_document(self) -> dict[str, bool]:
        return {sp.value: value for sp, value in self.declared_special_permissions.items()}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "description": self.description,
            "family_id": str(self.family_id) if self.family_id else None,
            "is_system_role": self.is_system_role,
            "is_default": self.is_default,
            "is_admin_role": self.is_admin_role,
            "parent_role_id": str(self.parent_role_id) if self.parent_role_id else None,
            "entity_privileges": self.entity_privileges.to_dict(),
            "declared_entities": sorted(e.value for e in self.declared_entities),
            "special_permissions": {sp.value: v for sp, v in self.special_permissions.items()},
        }


# ---------------------------------------------------------------------------
# Parsing helpers (collect every problem instead of stopping at the first)
# ---------------------------------------------------------------------------


def _parse_enum(enum_cls, value, field: str, errors: list[dict[str, str]]):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        errors.append({"field": field, "message": f"Invalid value {value!r}"})
        return None


def _iter_entity_rows(raw: Any, errors: list[dict[str, str]]) -> Iterable[tuple[Any, Any, str]]:
    """Accept either ``{entity: {privilege: level}}`` or the list form
    ``[{"entity": ..., "privileges": {...}}]``."""
    if isinstance(raw, Mapping):
        for entity, privileges in raw.items():
            yield entity, privileges, f"entity_privileges.{getattr(entity, 'value', entity)}"
        return
    if isinstance(raw, (list, tuple)):
        for i, item in enumerate(raw):
            if not isinstance(item, Mapping) or "entity" not in item:
                errors.append({
                    "field": f"entity_privileges[{i}]",
                    "message": "Each entry needs an 'entity' and 'privileges'",
                })
                continue
            yield item["entity"], item.get("privileges") or {}, f"entity_privileges[{i}]"
        return
    errors.append({"field": "entity_privileges", "message": "Must be a mapping or a list"})


def parse_entity_privileges(
    raw: Any, errors: list[dict[str, str]]
) -> dict[EntityKind, dict[PrivilegeKind, AccessLevel]]:
    rows: dict[EntityKind, dict[PrivilegeKind, AccessLevel]] = {}
    if raw is None:
        return rows
    for raw_entity, raw_privileges, field in _iter_entity_rows(raw, errors):
        entity = _parse_enum(EntityKind, raw_entity, field, errors)
        if entity is None:
            continue
        if entity in rows:
            errors.append({"field": field, "message": f"Duplicate entry for {entity.value!r}"})
            continue
        if not isinstance(raw_privileges, Mapping):
            errors.append({"field": field, "message": "Privileges must be a mapping"})
            continue
        row: dict[PrivilegeKind, AccessLevel] = {}
        for raw_privilege, raw_level in raw_privileges.items():
            cell = f"{field}.{getattr(raw_privilege, 'value', raw_privilege)}"
            privilege = _parse_enum(PrivilegeKind, raw_privilege, cell, errors)
            level = _parse_enum(AccessLevel, raw_level, cell, errors)
            if privilege is not None and level is not None:
                row[privilege] = level
        rows[entity] = row
    return rows


def parse_special_permissions(
    raw: Any, errors: list[dict[str, str]]
) -> dict[SpecialPermission, bool]:
    parsed: dict[SpecialPermission, bool] = {}
    if raw is None:
        return parsed
    if not isinstance(raw, Mapping):
        errors.append({"field": "special_permissions", "message": "Must be a mapping"})
        return parsed
    for raw_key, value in raw.items():
        field = f"special_permissions.{getattr(raw_key, 'value', raw_key)}"
        key = _parse_enum(SpecialPermission, raw_key, field, errors)
        if key is None:
            continue
        if not isinstance(value, bool):
            errors.append({"field": field, "message": "Must be a boolean"})
            continue
        parsed[key] = value
    return parsed


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def build_role(
    *,
    name: Any,
    role_id: uuid.UUID | None = None,
    description: str | None = None,
    family_id: uuid.UUID | None = None,
    is_system_role: bool = False,
    is_default: bool = False,
    entity_privileges: Any = None,
    special_permissions: Any = None,
    parent_role_id: uuid.UUID | None = None,
    created_by: uuid.UUID | None = None,
    updated_by: uuid.UUID | None = None,
) -> SecurityRole:
    """Validate a role specification and return a fully populated role.

    Entity kinds left out get an all-``none`` row, and
    privileges left out of a given row are ``none`` as well.  Anything
    malformed raises :class:`ValidationError` listing every bad field.
    Storage-dependent checks (name uniqueness, family existence, parent
    lookups) belong to the role service.
    """
    errors: list[dict[str, str]] = []
    role_id = role_id or uuid.uuid4()

    clean_name = name.strip() if isinstance(name, str) else ""
    if not clean_name:
        errors.append({"field": "name", "message": "Role name is required"})
    elif len(clean_name) > NAME_MAX_LENGTH:
        errors.append({
            "field": "name",
            "message": f"Must be at most {NAME_MAX_LENGTH} characters",
        })

    if description is not None and len(description) > DESCRIPTION_MAX_LENGTH:
        errors.append({
            "field": "description",
            "message": f"Must be at most {DESCRIPTION_MAX_LENGTH} characters",
        })

    if is_system_role and family_id is not None:
        errors.append({
            "field": "family_id",
            "message": "System roles cannot be bound to a family",
        })
    elif not is_system_role and family_id is None:
        errors.append({
            "field": "family_id",
            "message": "Family roles require a family_id",
        })

    if parent_role_id is not None and parent_role_id == role_id:
        errors.append({"field": "parent_role_id", "message": "A role cannot inherit from itself"})

    rows = parse_entity_privileges(entity_privileges, errors)
    specials = parse_special_permissions(special_permissions, errors)

    if errors:
        raise ValidationError(errors)

    return SecurityRole(
        id=role_id,
        name=clean_name,
        description=description,
        family_id=family_id,
        is_system_role=is_system_role,
        is_default=is_default,
        entity_privileges=PrivilegeGrid.from_rows(rows),
        declared_entities=frozenset(rows),
        declared_special_permissions=specials,
        parent_role_id=parent_role_id,
        created_by=created_by,
        updated_by=updated_by,
    )


def apply_role_patch(
    role: SecurityRole,
    *,
    name: Any = _UNSET,
    description: Any = _UNSET,
    entity_privileges: Any = _UNSET,
    special_permissions: Any = _UNSET,
    parent_role_id: Any = _UNSET,
    is_default: Any = _UNSET,
    updated_by: uuid.UUID | None = None,
) -> SecurityRole:
    """Return *role* with the given fields replaced, re-validated.

    ``entity_privileges`` replaces the declared rows wholesale;
    ``special_permissions`` is merged key by key into the declared flags.
    """
    errors: list[dict[str, str]] = []
    specials = dict(role.declared_special_permissions)
    if special_permissions is not _UNSET:
        specials.update(parse_special_permissions(special_permissions, errors))
        if errors:
            raise ValidationError(errors)

    rows: Any = {e: role.entity_privileges.row(e) for e in role.declared_entities}
    if entity_privileges is not _UNSET:
        rows = entity_privileges

    return build_role(
        role_id=role.id,
        name=role.name if name is _UNSET else name,
        description=role.description if description is _UNSET else description,
        family_id=role.family_id,
        is_system_role=role.is_system_role,
        is_default=role.is_default if is_default is _UNSET else bool(is_default),
        entity_privileges=rows,
        special_permissions=specials,
        parent_role_id=role.parent_role_id if parent_role_id is _UNSET else parent_role_id,
        created_by=role.created_by,
        updated_by=updated_by or role.updated_by,
    )


def role_from_document(doc: Mapping[str, Any]) -> SecurityRole:
    """Rebuild a role from its stored shape (see ``privileges_document``)."""
    return build_role(
        role_id=doc["id"],
        name=doc["name"],
        description=doc.get("description"),
        family_id=doc.get("family_id"),
        is_system_role=bool(doc.get("is_system_role")),
        is_default=bool(doc.get("is_default")),
        entity_privileges=doc.get("entity_privileges") or {},
        special_permissions=doc.get("special_permissions") or {},
        parent_role_id=doc.get("parent_role_id"),
        created_by=doc.get("created_by"),
        updated_by=doc.get("updated_by"),
    )


# ---------------------------------------------------------------------------
# Seed roles (created once at platform initialisation)
# ---------------------------------------------------------------------------

SYSTEM_ADMINISTRATOR = "System Administrator"
FAMILY_ADMINISTRATOR = "Family Administrator"
FAMILY_MEMBER = "Family Member"
GUEST = "Guest"

# Seed ids are stable so repeated seeding and the legacy table agree.
_SEED_NAMESPACE = uuid.UUID("6f1c9a52-3b0e-4d8a-9a57-2f4e1c0d7b31")


def seed_role_id(name: str) -> uuid.UUID:
    return uuid.uuid5(_SEED_NAMESPACE, name)


def _uniform_rows(level: AccessLevel) -> dict[EntityKind, dict[PrivilegeKind, AccessLevel]]:
    return {e: {p: level for p in PRIVILEGE_KINDS} for e in ENTITY_KINDS}


def _family_member_rows() -> dict[EntityKind, dict[PrivilegeKind, AccessLevel]]:
    rows = {}
    for entity in ENTITY_KINDS:
        rows[entity] = {
            PrivilegeKind.CREATE: AccessLevel.NONE if entity is EntityKind.USER else AccessLevel.FAMILY,
            PrivilegeKind.READ: AccessLevel.FAMILY,
            PrivilegeKind.WRITE: AccessLevel.USER,
            PrivilegeKind.DELETE: AccessLevel.USER,
            PrivilegeKind.ASSIGN: AccessLevel.NONE,
            PrivilegeKind.SHARE: AccessLevel.FAMILY,
            PrivilegeKind.APPROVE: AccessLevel.NONE,
            PrivilegeKind.EXPORT: AccessLevel.USER,
            PrivilegeKind.IMPORT: AccessLevel.NONE,
        }
    return rows


def _guest_rows() -> dict[EntityKind, dict[PrivilegeKind, AccessLevel]]:
    readable = {EntityKind.NEWS, EntityKind.EVENT, EntityKind.GALLERY}
    return {
        e: {PrivilegeKind.READ: AccessLevel.FAMILY if e in readable else AccessLevel.NONE}
        for e in ENTITY_KINDS
    }


def _specials(granted: Iterable[SpecialPermission]) -> dict[SpecialPermission, bool]:
    granted = set(granted)
    return {sp: sp in granted for sp in SPECIAL_PERMISSIONS}


SEED_ROLE_SPECS: dict[str, dict[str, Any]] = {
    SYSTEM_ADMINISTRATOR: {
        "description": "Full access to all system features",
        "entity_privileges": _uniform_rows(AccessLevel.GLOBAL),
        "special_permissions": _specials(SPECIAL_PERMISSIONS),
    },
    FAMILY_ADMINISTRATOR: {
        "description": "Full access to family features",
        "entity_privileges": _uniform_rows(AccessLevel.FAMILY),
        "special_permissions": _specials([
            SpecialPermission.MANAGE_ROLES,
            SpecialPermission.MANAGE_USERS,
            SpecialPermission.MANAGE_FAMILY,
            SpecialPermission.VIEW_AUDIT_LOGS,
            SpecialPermission.IMPORT_DATA,
            SpecialPermission.ACCESS_ADMIN,
            SpecialPermission.APPROVE_CONTENT,
            SpecialPermission.MANAGE_SETTINGS,
            SpecialPermission.SEND_NOTIFICATIONS,
        ]),
    },
    FAMILY_MEMBER: {
        "description": "Standard family member access",
        "is_default": True,
        "entity_privileges": _family_member_rows(),
        "special_permissions": _specials([]),
    },
    GUEST: {
        "description": "Read-only access to public content",
        "entity_privileges": _guest_rows(),
        "special_permissions": _specials([]),
    },
}


def build_seed_role(name: str, created_by: uuid.UUID | None = None) -> SecurityRole:
    spec = SEED_ROLE_SPECS[name]
    return build_role(
        role_id=seed_role_id(name),
        name=name,
        description=spec["description"],
        is_system_role=True,
        is_default=spec.get("is_default", False),
        entity_privileges=spec["entity_privileges"],
        special_permissions=spec["special_permissions"],
        created_by=created_by,
    )


def build_seed_roles(created_by: uuid.UUID | None = None) -> list[SecurityRole]:
    return [build_seed_role(name, created_by) for name in SEED_ROLE_SPECS]
