from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from leaddesk.leads.assignment import FRONT_LINE_ROLES, DirectoryUser
from leaddesk.leads.models import Lead, Team, User
from leaddesk.platform.security.context import AuthContext
from leaddesk.platform.security.repository import BaseRepository


def _to_directory_user(user: User) -> DirectoryUser:
    return DirectoryUser(
        id=user.id,
        status=user.status,
        team_id=user.team_id,
        role=user.role,
        display_name=user.display_name,
    )


class SqlUserDirectory:
    """User and team lookups backed by the request session."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_user(self, user_id: uuid.UUID) -> DirectoryUser | None:
        user = self._session.get(User, user_id)
        return _to_directory_user(user) if user is not None else None

    def team_exists(self, team_id: uuid.UUID) -> bool:
        return self._session.get(Team, team_id) is not None

    def display_names(self, user_ids: Iterable[uuid.UUID | None]) -> dict[uuid.UUID, str]:
        wanted = {user_id for user_id in user_ids if user_id is not None}
        if not wanted:
            return {}
        rows = self._session.execute(select(User.id, User.display_name, User.email).where(User.id.in_(wanted))).all()
        return {row.id: row.display_name or row.email for row in rows}

    def assignable_by_name(self) -> dict[str, DirectoryUser]:
        """Active front-line users keyed by lower-cased display name and email."""

        users = self._session.scalars(select(User).where(User.role.in_(sorted(FRONT_LINE_ROLES)))).all()
        lookup: dict[str, DirectoryUser] = {}
        for user in users:
            record = _to_directory_user(user)
            if not record.is_active:
                continue
            for key in (user.display_name, user.email):
                if key and key.strip():
                    lookup.setdefault(key.strip().lower(), record)
        return lookup


class LeadRepository(BaseRepository):
    resource = "lead"
    model = Lead

    def visible_query(self, ctx: AuthContext) -> Select[Any]:
        stmt: Select[Any] = select(Lead)
        return self.apply_scope_query(stmt, ctx)

    def list_visible(self, session: Session, ctx: AuthContext) -> list[Lead]:
        stmt = self.visible_query(ctx).order_by(Lead.created_at.desc().nulls_last(), Lead.id)
        return list(session.scalars(stmt).all())

    def get_visible(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> Lead | None:
        return session.scalar(self.visible_query(ctx).where(Lead.id == lead_id))

    def phone_taken(self, session: Session, phone: str, *, exclude_id: uuid.UUID | None = None) -> bool:
        stmt = select(func.count()).select_from(Lead).where(Lead.phone == phone)
        if exclude_id is not None:
            stmt = stmt.where(Lead.id != exclude_id)
        return int(session.scalar(stmt) or 0) > 0

    def existing_phones(self, session: Session) -> set[str]:
        return set(session.scalars(select(Lead.phone)).all())

    def last_login(self, session: Session, user_id: uuid.UUID) -> datetime | None:
        return session.scalar(select(User.last_login).where(User.id == user_id))
