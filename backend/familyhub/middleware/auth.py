"""Authentication and authorization dependencies for the FamilyHub API.

Provides:
- ``get_current_user()``: bearer JWT -> ``UserAccess``
- role store / audit sink / role service dependencies
- ``get_authorizer()`` and ``require_special_permission()``
- ``apply_scope_filter()``: turns a ``ScopeFilter`` into a WHERE clause
"""
from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy import false, or_
from sqlalchemy.ext.asyncio import AsyncSession

from familyhub.config import settings
from familyhub.database import get_db
from familyhub.rbac.decisions import (
    Authorizer,
    Forbidden,
    OwnedBy,
    ScopeFilter,
    Unrestricted,
    WithinFamily,
)
from familyhub.rbac.errors import ForbiddenError
from familyhub.rbac.subjects import UserAccess
from familyhub.rbac.vocabulary import SpecialPermission
from familyhub.services.audit_service import AuditSink, AuditWriter
from familyhub.services.role_store import RoleStore, SqlAlchemyRoleStore
from familyhub.services.security_roles import SecurityRoleService

# ---------------------------------------------------------------------------
# Bearer scheme
# ---------------------------------------------------------------------------

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

# ---------------------------------------------------------------------------
# Store, audit and service dependencies
# ---------------------------------------------------------------------------

_audit_writer: AuditWriter | None = None


def get_audit_sink() -> AuditSink:
    """Lazy-initialise the singleton AuditWriter."""
    global _audit_writer
    if _audit_writer is None:
        _audit_writer = AuditWriter(base_path=settings.AUDIT_STORAGE_PATH)
    return _audit_writer


async def get_role_store(db: AsyncSession = Depends(get_db)) -> RoleStore:
    return SqlAlchemyRoleStore(db)


async def get_role_service(
    store: RoleStore = Depends(get_role_store),
    audit: AuditSink = Depends(get_audit_sink),
) -> SecurityRoleService:
    return SecurityRoleService(store, audit)


# ---------------------------------------------------------------------------
# Current-user dependency
# ---------------------------------------------------------------------------


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> UserAccess:
    """Decode the JWT and load the caller's access fields.

    The token's ``sub`` claim is the user id.  Raises ``HTTPException(401)``
    when the token is invalid or the user is unknown, and 403 for a
    deactivated account.
    """
    from familyhub.models import User

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
        user_id = uuid.UUID(str(payload.get("sub")))
    except (JWTError, ValueError):
        raise credentials_exception

    user = await db.get(User, user_id)
    if user is None:
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return user.to_access()


# ---------------------------------------------------------------------------
# Authorization dependencies
# ---------------------------------------------------------------------------


async def get_authorizer(
    current_user: UserAccess = Depends(get_current_user),
    service: SecurityRoleService = Depends(get_role_service),
) -> Authorizer:
    return await service.authorizer_for(current_user)


def require_special_permission(*permissions: SpecialPermission):
    """Return a dependency that ensures the caller holds ALL *permissions*.

    Usage::

        @router.get("/audit")
        async def audit_view(authz: Authorizer = Depends(
            require_special_permission(SpecialPermission.VIEW_AUDIT_LOGS)
        )):
            ...
    """
    required = tuple(permissions)

    async def _check_special(authz: Authorizer = Depends(get_authorizer)) -> Authorizer:
        if not all(authz.has_special(p) for p in required):
            raise ForbiddenError()
        return authz

    return _check_special


# ---------------------------------------------------------------------------
# Data scoping
# ---------------------------------------------------------------------------


def apply_scope_filter(
    stmt,
    scope: ScopeFilter,
    *,
    owner_column,
    family_column,
    public_column=None,
):
    """Apply a ``ScopeFilter`` to a SQLAlchemy ``select()``.

    When *public_column* is given, publicly visible rows stay readable under
    every scope, matching ``Authorizer.can_perform`` for reads.  Pass it only
    for read queries.
    """
    if isinstance(scope, Unrestricted):
        return stmt
    if isinstance(scope, OwnedBy):
        clause = owner_column == scope.user_id
    elif isinstance(scope, WithinFamily):
        clause = family_column == scope.family_id
    elif isinstance(scope, Forbidden):
        clause = false()
    else:
        raise TypeError(f"Unsupported scope filter {scope!r}")

    if public_column is not None:
        clause = or_(clause, public_column.is_(True))
    return stmt.where(clause)
