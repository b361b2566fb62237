from __future__ import annotations

import logging
import uuid
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leaddesk.core.config import get_settings
from leaddesk.core.database import Base
from leaddesk.leads.models import Lead, Team, User
from leaddesk.leads.repositories import LeadRepository
from leaddesk.platform import AuthContext, apply_fls_read, apply_rls_filter, resolve_visibility
from leaddesk.platform.security.fls import mask_phone
from leaddesk.platform.security.rls import VisibilityScope, visibility_for


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def seeded(db_session: Session) -> dict[str, uuid.UUID]:
    north = Team(id=uuid.uuid4(), name="North")
    south = Team(id=uuid.uuid4(), name="South")
    db_session.add_all([north, south])
    db_session.flush()

    rm1 = User(id=uuid.uuid4(), email="rm1@example.com", role="relationship_mgr", team_id=north.id)
    rm2 = User(id=uuid.uuid4(), email="rm2@example.com", role="relationship_mgr", team_id=south.id)
    db_session.add_all([rm1, rm2])
    db_session.flush()

    leads = {
        "north_rm1": Lead(id=uuid.uuid4(), full_name="A", phone="9000000001", team_id=north.id, assigned_to=rm1.id),
        "north_open": Lead(id=uuid.uuid4(), full_name="B", phone="9000000002", team_id=north.id),
        "south_rm2": Lead(id=uuid.uuid4(), full_name="C", phone="9000000003", team_id=south.id, assigned_to=rm2.id),
        "orphan": Lead(id=uuid.uuid4(), full_name="D", phone="9000000004"),
    }
    db_session.add_all(leads.values())
    db_session.commit()

    ids = {name: lead.id for name, lead in leads.items()}
    ids.update(north=north.id, south=south.id, rm1=rm1.id, rm2=rm2.id)
    return ids


def _visible_names(session: Session, ctx: AuthContext, seeded: dict[str, uuid.UUID]) -> set[str]:
    rows = session.scalars(apply_rls_filter(select(Lead), Lead, ctx)).all()
    by_id = {value: key for key, value in seeded.items()}
    return {by_id[row.id] for row in rows}


def test_relationship_manager_sees_only_assigned_leads(db_session: Session, seeded: dict[str, uuid.UUID]) -> None:
    ctx = AuthContext(user_id=str(seeded["rm1"]), role="relationship_mgr", team_id=str(seeded["north"]))

    assert _visible_names(db_session, ctx, seeded) == {"north_rm1"}


def test_financial_manager_sees_only_assigned_leads(db_session: Session, seeded: dict[str, uuid.UUID]) -> None:
    ctx = AuthContext(user_id=str(seeded["rm2"]), role="financial_manager")

    assert _visible_names(db_session, ctx, seeded) == {"south_rm2"}


def test_team_leader_sees_team_leads(db_session: Session, seeded: dict[str, uuid.UUID]) -> None:
    ctx = AuthContext(user_id=str(uuid.uuid4()), role="team_leader", team_id=str(seeded["north"]))

    assert _visible_names(db_session, ctx, seeded) == {"north_rm1", "north_open"}


def test_team_leader_without_team_sees_nothing(db_session: Session, seeded: dict[str, uuid.UUID]) -> None:
    ctx = AuthContext(user_id=str(uuid.uuid4()), role="team_leader", team_id=None)

    assert _visible_names(db_session, ctx, seeded) == set()


@pytest.mark.parametrize("role", ["admin", "super_admin", "SUPER_ADMIN"])
def test_admins_see_everything(db_session: Session, seeded: dict[str, uuid.UUID], role: str) -> None:
    ctx = AuthContext(user_id=str(uuid.uuid4()), role=role)

    assert _visible_names(db_session, ctx, seeded) == {"north_rm1", "north_open", "south_rm2", "orphan"}
    assert visibility_for(ctx).scope == VisibilityScope.ALL


def test_unknown_role_defaults_to_full_visibility(
    db_session: Session,
    seeded: dict[str, uuid.UUID],
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING)
    ctx = AuthContext(user_id=str(uuid.uuid4()), role="auditor")

    assert _visible_names(db_session, ctx, seeded) == {"north_rm1", "north_open", "south_rm2", "orphan"}
    assert any(record.getMessage() == "visibility.unknown_role" for record in caplog.records)


def test_in_memory_predicate_matches_query(db_session: Session, seeded: dict[str, uuid.UUID]) -> None:
    leads = db_session.scalars(select(Lead)).all()
    contexts = [
        ("relationship_mgr", seeded["rm1"], seeded["north"]),
        ("team_leader", uuid.uuid4(), seeded["south"]),
        ("team_leader", uuid.uuid4(), None),
        ("admin", uuid.uuid4(), None),
    ]
    for role, caller_id, team_id in contexts:
        rule = resolve_visibility(role, caller_id, team_id)
        ctx = AuthContext(user_id=str(caller_id), role=role, team_id=str(team_id) if team_id else None)
        in_memory = {lead.id for lead in leads if rule.matches(lead)}
        queried = {lead.id for lead in db_session.scalars(apply_rls_filter(select(Lead), Lead, ctx)).all()}
        assert in_memory == queried


def test_rule_matches_plain_records() -> None:
    caller = uuid.uuid4()
    rule = resolve_visibility("relationship_mgr", str(caller), None)

    assert rule.scope == VisibilityScope.ASSIGNED
    assert rule.matches({"assigned_to": str(caller)})
    assert not rule.matches({"assigned_to": None})


def test_phone_is_masked_for_partial_view_roles() -> None:
    record = {"phone": "9876543210", "full_name": "Lead"}

    for role in ("relationship_mgr", "financial_manager", "team_leader"):
        masked = apply_fls_read("lead", record, AuthContext(user_id="u", role=role))
        assert masked["phone"] == "98******"
        assert masked["full_name"] == "Lead"

    for role in ("admin", "super_admin", "auditor"):
        assert apply_fls_read("lead", record, AuthContext(user_id="u", role=role))["phone"] == "9876543210"


def test_repository_read_security_masks_phone() -> None:
    ctx = AuthContext(user_id="u", role="team_leader")

    assert LeadRepository().apply_read_security({"phone": "9123456780"}, ctx) == {"phone": "91******"}
    assert mask_phone(None) is None
