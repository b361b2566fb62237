from leaddesk.platform.security import (
    AuthContext,
    AuthorizationError,
    BaseRepository,
    ForbiddenRoleError,
    apply_fls_read,
    apply_rls_filter,
    resolve_visibility,
)

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "BaseRepository",
    "ForbiddenRoleError",
    "apply_fls_read",
    "apply_rls_filter",
    "resolve_visibility",
]
