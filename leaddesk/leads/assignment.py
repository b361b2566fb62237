"""Resolution of ``assigned_to`` / ``team_id`` / ``assigned_at`` for lead writes."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from leaddesk.leads.errors import LeadValidationError, ReferenceNotFoundError
from leaddesk.metrics import observe_lead_assignment
from leaddesk.platform.security.context import AuthContext


logger = logging.getLogger("leaddesk.leads")

FRONT_LINE_ROLES = frozenset({"relationship_mgr", "financial_manager"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class DirectoryUser:
    id: uuid.UUID
    status: str
    team_id: uuid.UUID | None = None
    role: str = ""
    display_name: str | None = None

    @property
    def is_active(self) -> bool:
        return (self.status or "").strip().lower() == "active"


class UserDirectory(Protocol):
    def get_user(self, user_id: uuid.UUID) -> DirectoryUser | None:
        ...

    def team_exists(self, team_id: uuid.UUID) -> bool:
        ...


@dataclass(frozen=True, slots=True)
class AssignmentState:
    assigned_to: uuid.UUID | None = None
    team_id: uuid.UUID | None = None
    assigned_at: datetime | None = None


def normalize_reference(value: Any) -> str | None:
    """Blank and whitespace-only references mean "not supplied"."""

    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_reference(value: str | None) -> uuid.UUID | None:
    if value is None:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


class AssignmentResolver:
    def __init__(self, users: UserDirectory, clock: Callable[[], datetime] = utcnow) -> None:
        self._users = users
        self._clock = clock

    def resolve_create(self, caller: AuthContext, requested_assignee: Any, requested_team: Any) -> AssignmentState:
        team_id = self._resolve_team(requested_team)
        requested = normalize_reference(requested_assignee)

        if requested is not None:
            user = self._active_user(requested, operation="create")
            if user is not None:
                observe_lead_assignment("create", "requested")
                return AssignmentState(
                    assigned_to=user.id,
                    team_id=team_id if team_id is not None else user.team_id,
                    assigned_at=self._clock(),
                )

        if caller.role.lower() in FRONT_LINE_ROLES:
            caller_id = parse_reference(caller.user_id)
            if caller_id is not None:
                observe_lead_assignment("create", "self")
                if team_id is None:
                    team_id = self._caller_team(caller, caller_id)
                return AssignmentState(assigned_to=caller_id, team_id=team_id, assigned_at=self._clock())

        observe_lead_assignment("create", "unassigned")
        return AssignmentState(assigned_to=None, team_id=team_id, assigned_at=None)

    def resolve_update(
        self,
        caller: AuthContext,
        current: AssignmentState,
        requested_assignee: Any,
        requested_team: Any,
    ) -> AssignmentState:
        if caller.role.lower() in FRONT_LINE_ROLES:
            if normalize_reference(requested_assignee) is not None or normalize_reference(requested_team) is not None:
                observe_lead_assignment("update", "locked")
            return current

        assigned_to = current.assigned_to
        assignee: DirectoryUser | None = None
        requested = normalize_reference(requested_assignee)
        if requested is not None:
            assignee = self._active_user(requested, operation="update")
            if assignee is not None:
                assigned_to = assignee.id

        team_id = self._resolve_team(requested_team)
        if team_id is None:
            team_id = current.team_id
        if team_id is None and assigned_to is not None:
            if assignee is None:
                assignee = self._users.get_user(assigned_to)
            team_id = assignee.team_id if assignee is not None else None

        assigned_at = self._next_assigned_at(current, assigned_to)
        observe_lead_assignment("update", "changed" if assigned_to != current.assigned_to else "unchanged")
        return AssignmentState(assigned_to=assigned_to, team_id=team_id, assigned_at=assigned_at)

    def resolve_assign(self, current: AssignmentState, target: Any) -> AssignmentState:
        """Dedicated assignment: the target must exist, its status is not checked."""

        requested = normalize_reference(target)
        if requested is None:
            raise LeadValidationError("assigned_to", "assigned_to is required")
        user_id = parse_reference(requested)
        user = self._users.get_user(user_id) if user_id is not None else None
        if user is None:
            observe_lead_assignment("assign", "not_found")
            raise ReferenceNotFoundError("user", requested)

        team_id = current.team_id if current.team_id is not None else user.team_id
        observe_lead_assignment("assign", "changed" if user.id != current.assigned_to else "unchanged")
        return AssignmentState(
            assigned_to=user.id,
            team_id=team_id,
            assigned_at=self._next_assigned_at(current, user.id),
        )

    def _next_assigned_at(self, current: AssignmentState, assigned_to: uuid.UUID | None) -> datetime | None:
        if assigned_to is None:
            return None
        if assigned_to != current.assigned_to:
            return self._clock()
        return current.assigned_at

    def _active_user(self, requested: str, *, operation: str) -> DirectoryUser | None:
        user_id = parse_reference(requested)
        user = self._users.get_user(user_id) if user_id is not None else None
        if user is not None and user.is_active:
            return user

        reason = "not_found" if user is None else "inactive"
        observe_lead_assignment(operation, f"rejected_{reason}")
        logger.info(
            "lead.assignee_rejected",
            extra={"operation": operation, "requested_assignee": requested, "outcome": reason},
        )
        return None

    def _resolve_team(self, requested_team: Any) -> uuid.UUID | None:
        team_id = parse_reference(normalize_reference(requested_team))
        if team_id is None or not self._users.team_exists(team_id):
            return None
        return team_id

    def _caller_team(self, caller: AuthContext, caller_id: uuid.UUID) -> uuid.UUID | None:
        record = self._users.get_user(caller_id)
        if record is not None:
            return record.team_id
        return parse_reference(normalize_reference(caller.team_id))
