"""Row visibility for leads.

Each role maps to a rule builder. A built rule can be evaluated against a
single lead in memory (``matches``) or pushed down into a query (``apply``);
both forms encode the same predicate.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from sqlalchemy import false
from sqlalchemy.sql import Select

from leaddesk.platform.security.context import AuthContext


logger = logging.getLogger("leaddesk.security")


class VisibilityScope(StrEnum):
    ALL = "all"
    ASSIGNED = "assigned"
    TEAM = "team"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class VisibilityRule:
    scope: VisibilityScope
    user_id: uuid.UUID | None = None
    team_id: uuid.UUID | None = None

    def matches(self, lead: Any) -> bool:
        if self.scope == VisibilityScope.ALL:
            return True
        if self.scope == VisibilityScope.NONE:
            return False
        if self.scope == VisibilityScope.ASSIGNED:
            return _same_id(_read(lead, "assigned_to"), self.user_id)
        return _same_id(_read(lead, "team_id"), self.team_id)

    def apply(self, query: Select[Any], model: Any) -> Select[Any]:
        if self.scope == VisibilityScope.ALL:
            return query
        if self.scope == VisibilityScope.NONE:
            return query.where(false())
        if self.scope == VisibilityScope.ASSIGNED:
            return query.where(model.assigned_to == self.user_id)
        return query.where(model.team_id == self.team_id)


def _read(lead: Any, name: str) -> Any:
    if isinstance(lead, dict):
        return lead.get(name)
    return getattr(lead, name, None)


def _same_id(value: Any, expected: uuid.UUID | None) -> bool:
    if value is None or expected is None:
        return False
    return str(value) == str(expected)


def _coerce_uuid(value: Any) -> uuid.UUID | None:
    if value is None or value == "":
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _assigned_leads(caller_id: uuid.UUID | None, caller_team_id: uuid.UUID | None) -> VisibilityRule:
    if caller_id is None:
        return VisibilityRule(scope=VisibilityScope.NONE)
    return VisibilityRule(scope=VisibilityScope.ASSIGNED, user_id=caller_id)


def _team_leads(caller_id: uuid.UUID | None, caller_team_id: uuid.UUID | None) -> VisibilityRule:
    if caller_team_id is None:
        return VisibilityRule(scope=VisibilityScope.NONE)
    return VisibilityRule(scope=VisibilityScope.TEAM, team_id=caller_team_id)


def _all_leads(caller_id: uuid.UUID | None, caller_team_id: uuid.UUID | None) -> VisibilityRule:
    return VisibilityRule(scope=VisibilityScope.ALL)


RuleBuilder = Callable[[uuid.UUID | None, uuid.UUID | None], VisibilityRule]

VISIBILITY_BUILDERS: dict[str, RuleBuilder] = {
    "relationship_mgr": _assigned_leads,
    "financial_manager": _assigned_leads,
    "team_leader": _team_leads,
    "admin": _all_leads,
    "super_admin": _all_leads,
}

# Unrecognized roles see every lead. Security-relevant: revisit before adding new roles.
DEFAULT_VISIBILITY_BUILDER: RuleBuilder = _all_leads


def resolve_visibility(role: str | None, caller_id: Any, caller_team_id: Any) -> VisibilityRule:
    normalized_role = (role or "").strip().lower()
    builder = VISIBILITY_BUILDERS.get(normalized_role)
    if builder is None:
        logger.warning("visibility.unknown_role", extra={"role": normalized_role, "user_id": str(caller_id)})
        builder = DEFAULT_VISIBILITY_BUILDER
    return builder(_coerce_uuid(caller_id), _coerce_uuid(caller_team_id))


def visibility_for(ctx: AuthContext) -> VisibilityRule:
    return resolve_visibility(ctx.role, ctx.user_id, ctx.team_id)


def apply_rls_filter(query: Select[Any], model: Any, ctx: AuthContext) -> Select[Any]:
    """Restrict a lead query to the rows the caller may read."""

    return visibility_for(ctx).apply(query, model)
