from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from leaddesk.leads.assignment import FRONT_LINE_ROLES
from leaddesk.leads.models import Lead


NEVER_LOGGED_IN = datetime(1970, 1, 1, tzinfo=timezone.utc)


def count_new_assignments(session: Session, user_id: uuid.UUID, role: str | None, since: datetime | None) -> int:
    """Leads assigned to ``user_id`` strictly after ``since`` (the user's previous login).

    Only relationship and financial managers are notified; other roles always get 0.
    """

    if (role or "").lower() not in FRONT_LINE_ROLES:
        return 0
    reference = since or NEVER_LOGGED_IN
    stmt = (
        select(func.count())
        .select_from(Lead)
        .where(
            Lead.assigned_to == user_id,
            Lead.assigned_at.is_not(None),
            Lead.assigned_at > reference,
        )
    )
    return int(session.scalar(stmt) or 0)


@dataclass
class NewLeadPollState:
    """Client-side bookkeeping for the periodic new-lead poll.

    The first poll after login only records the baseline, since login already
    announced that count. Later polls announce the growth since the last poll.
    """

    baseline: int = 0
    has_shown_first_poll: bool = False

    def observe(self, count: int) -> int:
        if not self.has_shown_first_poll:
            self.has_shown_first_poll = True
            self.baseline = count
            return 0
        added = count - self.baseline if count > self.baseline else 0
        self.baseline = count
        return added
