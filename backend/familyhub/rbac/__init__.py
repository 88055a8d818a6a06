from familyhub.rbac.decisions import (
    Authorizer,
    Forbidden,
    OwnedBy,
    ScopeFilter,
    Unrestricted,
    WithinFamily,
    build_scope_filter,
    can_perform,
    has_special_permission,
)
from familyhub.rbac.errors import (
    ConfigurationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    RBACError,
    ValidationError,
)
from familyhub.rbac.grid import EffectivePrivileges, PrivilegeGrid
from familyhub.rbac.legacy import has_legacy_permission
from familyhub.rbac.resolver import resolve_effective_privileges
from familyhub.rbac.roles import SecurityRole, build_role
from familyhub.rbac.subjects import CustomPermission, TargetResource, UserAccess
from familyhub.rbac.vocabulary import (
    AccessLevel,
    EntityKind,
    LegacyRole,
    PrivilegeKind,
    SpecialPermission,
)

__all__ = [
    # Vocabulary
    "AccessLevel",
    "EntityKind",
    "LegacyRole",
    "PrivilegeKind",
    "SpecialPermission",
    # Value types
    "PrivilegeGrid",
    "EffectivePrivileges",
    "SecurityRole",
    "UserAccess",
    "CustomPermission",
    "TargetResource",
    # Operations
    "build_role",
    "resolve_effective_privileges",
    "has_legacy_permission",
    "can_perform",
    "build_scope_filter",
    "has_special_permission",
    "Authorizer",
    # Scope filters
    "ScopeFilter",
    "Unrestricted",
    "OwnedBy",
    "WithinFamily",
    "Forbidden",
    # Errors
    "RBACError",
    "ValidationError",
    "ConflictError",
    "ConfigurationError",
    "ForbiddenError",
    "NotFoundError",
]
