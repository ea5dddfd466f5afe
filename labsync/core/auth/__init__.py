from .dependencies import get_current_user, require_roles, require_capability
from .roles import Role, Capability, ROLE_CAPABILITIES, has_capability
from .schemas import UserResponse

__all__ = [
    "get_current_user",
    "require_roles",
    "require_capability",
    "Role",
    "Capability",
    "ROLE_CAPABILITIES",
    "has_capability",
    "UserResponse"
]
