"""Security role routes --- role CRUD and platform role seeding."""
from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from familyhub.middleware.auth import get_current_user, get_role_service
from familyhub.rbac.subjects import UserAccess
from familyhub.services.security_roles import SecurityRoleService

router = APIRouter(prefix="/api/security-roles", tags=["security-roles"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class SecurityRoleCreate(BaseModel):
    name: str
    description: str | None = None
    family_id: uuid.UUID | None = None
    is_system_role: bool = False
    is_default: bool = False
    # Either {entity: {privilege: level}} or [{"entity": ..., "privileges": {...}}]
    entity_privileges: dict[str, dict[str, str]] | list[dict[str, Any]] | None = None
    special_permissions: dict[str, Any] | None = None
    parent_role_id: uuid.UUID | None = None


class SecurityRoleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    is_default: bool | None = None
    entity_privileges: dict[str, dict[str, str]] | list[dict[str, Any]] | None = None
    special_permissions: dict[str, Any] | None = Field(
        default=None, description="Merged key by key into the role's flags"
    )
    parent_role_id: uuid.UUID | None = None


# ---------------------------------------------------------------------------
# ROLES
# ---------------------------------------------------------------------------


@router.get("")
async def list_security_roles(
    system_only: bool = Query(False),
    user: UserAccess = Depends(get_current_user),
    service: SecurityRoleService = Depends(get_role_service),
):
    """List system roles plus the roles of the caller's family."""
    roles = await service.list_roles(user, system_only=system_only)
    return {"items": [r.to_dict() for r in roles], "total": len(roles)}


@router.post("", status_code=201)
async def create_security_role(
    body: SecurityRoleCreate,
    user: UserAccess = Depends(get_current_user),
    service: SecurityRoleService = Depends(get_role_service),
):
    role = await service.create_role(user, **body.model_dump())
    return role.to_dict()


@router.post("/initialize")
async def initialize_system_roles(
    user: UserAccess = Depends(get_current_user),
    service: SecurityRoleService = Depends(get_role_service),
):
    """Create the platform's system roles.  Safe to call repeatedly."""
    created = await service.seed_system_roles(user)
    return {"created": [r.to_dict() for r in created], "count": len(created)}


@router.get("/{role_id}")
async def get_security_role(
    role_id: uuid.UUID,
    user: UserAccess = Depends(get_current_user),
    service: SecurityRoleService = Depends(get_role_service),
):
    role = await service.get_role(user, role_id)
    return role.to_dict()


@router.patch("/{role_id}")
async def update_security_role(
    role_id: uuid.UUID,
    body: SecurityRoleUpdate,
    user: UserAccess = Depends(get_current_user),
    service: SecurityRoleService = Depends(get_role_service),
):
    role = await service.update_role(user, role_id, body.model_dump(exclude_unset=True))
    return role.to_dict()


@router.delete("/{role_id}", status_code=204)
async def delete_security_role(
    role_id: uuid.UUID,
    user: UserAccess = Depends(get_current_user),
    service: SecurityRoleService = Depends(get_role_service),
):
    await service.delete_role(user, role_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
