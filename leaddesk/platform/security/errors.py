from __future__ import annotations


class AuthorizationError(Exception):
    """Base authorization error for role and visibility enforcement failures."""


class ForbiddenRoleError(AuthorizationError):
    """Raised when the caller's role may not perform an action."""

    def __init__(self, role: str, action: str) -> None:
        self.role = role
        self.action = action
        super().__init__(f"Role '{role or 'unknown'}' may not {action}")
