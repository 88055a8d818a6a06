"""Caller identity, custom permission overrides, and target-resource facts."""
from __future__ import annotations

import dataclasses
import uuid
from collections.abc import Iterable, Mapping
from typing import Any, Union

from familyhub.rbac.errors import ValidationError
from familyhub.rbac.vocabulary import EntityKind, LegacyRole, PrivilegeKind, SpecialPermission

# ---------------------------------------------------------------------------
# Custom permission keys
#
#   special:<capability>                e.g. special:canApproveContent
#   entity:<entity_kind>:<privilege>    e.g. entity:news:write
#   <entity_kind>:<privilege>           short form, same meaning
# ---------------------------------------------------------------------------

SPECIAL_PREFIX = "special:"
ENTITY_PREFIX = "entity:"

PermissionTarget = Union[SpecialPermission, tuple[EntityKind, PrivilegeKind]]


def parse_permission_key(key: str) -> PermissionTarget | None:
    """Return what a custom permission key points at, or None if malformed."""
    if not isinstance(key, str):
        return None
    if key.startswith(SPECIAL_PREFIX):
        try:
            return SpecialPermission(key[len(SPECIAL_PREFIX):])
        except ValueError:
            return None
    body = key[len(ENTITY_PREFIX):] if key.startswith(ENTITY_PREFIX) else key
    parts = body.split(":")
    if len(parts) != 2:
        return None
    try:
        return EntityKind(parts[0]), PrivilegeKind(parts[1])
    except ValueError:
        return None


def entity_permission_key(entity: EntityKind, privilege: PrivilegeKind) -> str:
    return f"{ENTITY_PREFIX}{entity.value}:{privilege.value}"


def special_permission_key(permission: SpecialPermission) -> str:
    return f"{SPECIAL_PREFIX}{permission.value}"


@dataclasses.dataclass(frozen=True)
class CustomPermission:
    permission: str
    granted: bool

    @property
    def target(self) -> PermissionTarget | None:
        return parse_permission_key(self.permission)

    def to_dict(self) -> dict[str, Any]:
        return {"permission": self.permission, "granted": self.granted}


def parse_custom_permissions(raw: Iterable[Any] | None) -> tuple[CustomPermission, ...]:
    """Validate a list of ``{"permission": str, "granted": bool}`` entries."""
    if raw is None:
        return ()
    errors: list[dict[str, str]] = []
    parsed: list[CustomPermission] = []
    for i, item in enumerate(raw):
        field = f"custom_permissions[{i}]"
        if isinstance(item, CustomPermission):
            entry = item
        elif isinstance(item, Mapping):
            entry = CustomPermission(item.get("permission"), item.get("granted"))
        else:
            errors.append({"field": field, "message": "Must be an object"})
            continue
        if not isinstance(entry.granted, bool):
            errors.append({"field": f"{field}.granted", "message": "Must be a boolean"})
        if parse_permission_key(entry.permission) is None:
            errors.append({
                "field": f"{field}.permission",
                "message": f"Unknown permission key {entry.permission!r}",
            })
        parsed.append(entry)
    if errors:
        raise ValidationError(errors)
    return tuple(parsed)


def upsert_custom_permission(
    current: Iterable[CustomPermission], permission: str, granted: bool
) -> tuple[CustomPermission, ...]:
    """Drop any entry for *permission* and append the new one."""
    (entry,) = parse_custom_permissions([{"permission": permission, "granted": granted}])
    kept = [p for p in current if p.permission != permission]
    return (*kept, entry)


# ---------------------------------------------------------------------------
# Caller / user
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class UserAccess:
    """The authorization-relevant fields of a user record."""

    id: uuid.UUID
    role: LegacyRole = LegacyRole.GUEST
    family_id: uuid.UUID | None = None
    security_role_id: uuid.UUID | None = None
    custom_permissions: tuple[CustomPermission, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.role, LegacyRole):
            object.__setattr__(self, "role", LegacyRole(self.role))
        object.__setattr__(self, "custom_permissions", tuple(self.custom_permissions))

    @property
    def is_system_admin(self) -> bool:
        return self.role is LegacyRole.SYSTEM_ADMIN

    def replace(self, **changes: Any) -> UserAccess:
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "role": self.role.value,
            "family_id": str(self.family_id) if self.family_id else None,
            "security_role_id": str(self.security_role_id) if self.security_role_id else None,
            "custom_permissions": [p.to_dict() for p in self.custom_permissions],
        }


# ---------------------------------------------------------------------------
# Target resource
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class TargetResource:
    """Ownership facts an endpoint supplies about the record being checked."""

    owner_id: uuid.UUID | None = None
    family_id: uuid.UUID | None = None
    is_publicly_visible: bool = False
