from familyhub.models.family import Family
from familyhub.models.security_role import SecurityRoleRecord
from familyhub.models.user import User

__all__ = [
    "Family",
    "SecurityRoleRecord",
    "User",
]
