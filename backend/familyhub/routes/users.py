"""User access routes --- security role assignment and custom permissions."""
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from familyhub.middleware.auth import get_current_user, get_role_service
from familyhub.rbac.subjects import UserAccess
from familyhub.services.security_roles import SecurityRoleService

router = APIRouter(prefix="/api/users", tags=["users"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class RoleAssignment(BaseModel):
    security_role_id: uuid.UUID


class CustomPermissionEntry(BaseModel):
    permission: str
    granted: bool


class CustomPermissionList(BaseModel):
    custom_permissions: list[CustomPermissionEntry]


def _access_response(
    user: UserAccess, role=None, effective=None
) -> dict:
    body = user.to_dict()
    body["security_role"] = role.to_dict() if role else None
    if effective is not None:
        body["effective_permissions"] = effective.to_dict()
    return body


# ---------------------------------------------------------------------------
# SECURITY ROLE ASSIGNMENT
# ---------------------------------------------------------------------------


@router.get("/{user_id}/security-role")
async def get_user_security_role(
    user_id: uuid.UUID,
    current_user: UserAccess = Depends(get_current_user),
    service: SecurityRoleService = Depends(get_role_service),
):
    target, role, _ = await service.get_user_permissions(current_user, user_id)
    return _access_response(target, role)


@router.put("/{user_id}/security-role")
async def assign_user_security_role(
    user_id: uuid.UUID,
    body: RoleAssignment,
    current_user: UserAccess = Depends(get_current_user),
    service: SecurityRoleService = Depends(get_role_service),
):
    target = await service.assign_role(current_user, user_id, body.security_role_id)
    return target.to_dict()


@router.delete("/{user_id}/security-role")
async def remove_user_security_role(
    user_id: uuid.UUID,
    current_user: UserAccess = Depends(get_current_user),
    service: SecurityRoleService = Depends(get_role_service),
):
    """Unassign the role; the user falls back to their legacy role."""
    target = await service.remove_role(current_user, user_id)
    return target.to_dict()


# ---------------------------------------------------------------------------
# CUSTOM PERMISSIONS
# ---------------------------------------------------------------------------


@router.get("/{user_id}/permissions")
async def get_user_permissions(
    user_id: uuid.UUID,
    current_user: UserAccess = Depends(get_current_user),
    service: SecurityRoleService = Depends(get_role_service),
):
    """Effective privileges after inheritance and overrides."""
    target, role, effective = await service.get_user_permissions(current_user, user_id)
    return _access_response(target, role, effective)


@router.patch("/{user_id}/permissions")
async def set_user_permission(
    user_id: uuid.UUID,
    body: CustomPermissionEntry,
    current_user: UserAccess = Depends(get_current_user),
    service: SecurityRoleService = Depends(get_role_service),
):
    """Grant or revoke a single permission key."""
    target = await service.set_custom_permission(
        current_user, user_id, body.permission, body.granted
    )
    return target.to_dict()


@router.put("/{user_id}/permissions")
async def replace_user_permissions(
    user_id: uuid.UUID,
    body: CustomPermissionList,
    current_user: UserAccess = Depends(get_current_user),
    service: SecurityRoleService = Depends(get_role_service),
):
    target = await service.replace_custom_permissions(
        current_user, user_id, [e.model_dump() for e in body.custom_permissions]
    )
    return target.to_dict()
