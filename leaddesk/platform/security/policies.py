from __future__ import annotations

from enum import StrEnum
from threading import Lock
from typing import Protocol

from leaddesk.platform.security.context import AuthContext


class FieldDecision(StrEnum):
    ALLOW = "ALLOW"
    MASK = "MASK"
    DENY = "DENY"


class PolicyBackend(Protocol):
    """Pluggable field policy used on read paths."""

    def evaluate_field_read(self, resource: str, field: str, ctx: AuthContext) -> FieldDecision:
        ...


PARTIAL_VIEW_ROLES = frozenset({"relationship_mgr", "financial_manager", "team_leader"})

DEFAULT_FIELD_MASKS: dict[str, dict[str, frozenset[str]]] = {
    "lead": {"phone": PARTIAL_VIEW_ROLES},
}


class RoleMaskPolicyBackend:
    """Masks configured fields for the listed roles; everything else is readable."""

    def __init__(self, field_masks: dict[str, dict[str, frozenset[str]]] | None = None) -> None:
        self._field_masks = field_masks if field_masks is not None else DEFAULT_FIELD_MASKS

    def evaluate_field_read(self, resource: str, field: str, ctx: AuthContext) -> FieldDecision:
        masked_roles = self._field_masks.get(resource, {}).get(field)
        if masked_roles and ctx.role.lower() in masked_roles:
            return FieldDecision.MASK
        return FieldDecision.ALLOW


_backend_lock = Lock()
_policy_backend: PolicyBackend = RoleMaskPolicyBackend()


def set_policy_backend(backend: PolicyBackend) -> None:
    global _policy_backend
    with _backend_lock:
        _policy_backend = backend


def get_policy_backend() -> PolicyBackend:
    with _backend_lock:
        return _policy_backend
