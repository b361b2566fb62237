from leaddesk.platform.security.context import AuthContext
from leaddesk.platform.security.errors import AuthorizationError, ForbiddenRoleError
from leaddesk.platform.security.fls import apply_fls_read, apply_fls_read_many, mask_phone
from leaddesk.platform.security.repository import BaseRepository
from leaddesk.platform.security.rls import (
    VisibilityRule,
    VisibilityScope,
    apply_rls_filter,
    resolve_visibility,
    visibility_for,
)
from leaddesk.platform.security.policies import (
    FieldDecision,
    PolicyBackend,
    RoleMaskPolicyBackend,
    get_policy_backend,
    set_policy_backend,
)

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "ForbiddenRoleError",
    "BaseRepository",
    "VisibilityRule",
    "VisibilityScope",
    "apply_rls_filter",
    "apply_fls_read",
    "apply_fls_read_many",
    "mask_phone",
    "resolve_visibility",
    "visibility_for",
    "FieldDecision",
    "PolicyBackend",
    "RoleMaskPolicyBackend",
    "get_policy_backend",
    "set_policy_backend",
]
