from __future__ import annotations

import uuid
from collections.abc import Callable, Generator
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leaddesk.core.config import get_settings
from leaddesk.core.database import Base, get_db
from leaddesk.leads.api import get_current_user
from leaddesk.leads.models import Lead, Team, User
from leaddesk.leads.service import ActorUser
from leaddesk.main import app
from leaddesk.middleware.rate_limit import reset_rate_limiter


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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@dataclass
class Directory:
    teams: dict[str, uuid.UUID]
    users: dict[str, User]

    def id(self, name: str) -> str:
        return str(self.users[name].id)


@pytest.fixture()
def directory(db_session: Session) -> Directory:
    teams = {"north": Team(id=uuid.uuid4(), name="North"), "south": Team(id=uuid.uuid4(), name="South")}
    db_session.add_all(teams.values())
    db_session.flush()

    specs = {
        "super_admin": ("super_admin", None, "active"),
        "admin": ("admin", None, "active"),
        "rm1": ("relationship_mgr", "north", "active"),
        "rm2": ("relationship_mgr", "south", "active"),
        "rm_inactive": ("relationship_mgr", "south", "inactive"),
        "fm": ("financial_manager", "north", "active"),
        "tl_north": ("team_leader", "north", "active"),
    }
    users: dict[str, User] = {}
    for name, (role, team, status) in specs.items():
        users[name] = User(
            id=uuid.uuid4(),
            email=f"{name}@example.com",
            display_name=name.upper(),
            role=role,
            status=status,
            team_id=teams[team].id if team else None,
        )
    db_session.add_all(users.values())
    db_session.commit()
    return Directory(teams={key: team.id for key, team in teams.items()}, users=users)


@pytest.fixture()
def client(
    db_session: Session,
    directory: Directory,
) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    current = {"name": "admin"}

    def override_get_current_user(request: Request) -> ActorUser:
        user = directory.users[current["name"]]
        return ActorUser(
            user_id=str(user.id),
            role=user.role,
            team_id=str(user.team_id) if user.team_id else None,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    def set_actor(name: str) -> None:
        current["name"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


def _create(test_client: TestClient, **fields: Any) -> dict[str, Any]:
    payload = {"fullName": "Asha Rao", "phone": "9876543210"}
    payload.update(fields)
    response = test_client.post("/api/leads", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def _update_payload(lead: dict[str, Any], **fields: Any) -> dict[str, Any]:
    payload = {"fullName": lead["fullName"], "phone": lead["phone"], "status": lead["status"]}
    payload.update(fields)
    return payload


def test_relationship_manager_create_self_assigns(
    client: tuple[TestClient, Callable[[str], None]],
    directory: Directory,
) -> None:
    test_client, set_actor = client
    set_actor("rm1")

    lead = _create(test_client, note="first call")

    assert lead["assigned_to"] == directory.id("rm1")
    assert lead["team_id"] == str(directory.teams["north"])
    assert lead["assigned_at"] is not None
    assert lead["assignedUserName"] == "RM1"
    assert lead["status"] == "New"
    assert lead["phone"] == "98******"
    assert [entry["note"] for entry in lead["statusHistory"]] == ["first call"]


def test_admin_create_is_unassigned_and_unmasked(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client

    lead = _create(test_client, phone="98765-43210")

    assert lead["assigned_to"] is None
    assert lead["assigned_at"] is None
    assert lead["phone"] == "9876543210"


def test_create_with_inactive_assignee_leaves_lead_unassigned(
    client: tuple[TestClient, Callable[[str], None]],
    directory: Directory,
) -> None:
    test_client, _ = client

    lead = _create(test_client, assigned_to=directory.id("rm_inactive"))

    assert lead["assigned_to"] is None


def test_create_with_assignee_takes_assignee_team(
    client: tuple[TestClient, Callable[[str], None]],
    directory: Directory,
) -> None:
    test_client, _ = client

    lead = _create(test_client, assigned_to=directory.id("rm2"))

    assert lead["assigned_to"] == directory.id("rm2")
    assert lead["team_id"] == str(directory.teams["south"])


@pytest.mark.parametrize("duplicate", ["98765-43210", "(987) 654 3210", "9876543210"])
def test_normalized_phones_are_duplicates(client: tuple[TestClient, Callable[[str], None]], duplicate: str) -> None:
    test_client, _ = client
    _create(test_client, phone="9876543210")

    response = test_client.post("/api/leads", json={"fullName": "Someone Else", "phone": duplicate})

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "lead_create_failed"
    assert body["details"]["field"] == "phone"
    assert "9876543210" in body["message"]


@pytest.mark.parametrize(
    ("payload", "field"),
    [
        ({"fullName": "Asha", "phone": "12345"}, "phone"),
        ({"fullName": "Asha", "phone": "98765432101"}, "phone"),
        ({"fullName": "Asha"}, "phone"),
        ({"fullName": "  ", "phone": "9876543210"}, "fullName"),
        ({"fullName": "Asha", "phone": "9876543210", "status": "Promoted"}, "status"),
    ],
)
def test_create_validation_errors(
    client: tuple[TestClient, Callable[[str], None]],
    db_session: Session,
    payload: dict[str, Any],
    field: str,
) -> None:
    test_client, _ = client

    response = test_client.post("/api/leads", json=payload)

    assert response.status_code == 422
    assert response.json()["details"]["field"] == field
    assert db_session.scalars(select(Lead)).all() == []


def test_invisible_lead_is_not_found(client: tuple[TestClient, Callable[[str], None]], directory: Directory) -> None:
    test_client, set_actor = client
    lead = _create(test_client, assigned_to=directory.id("rm1"))

    set_actor("rm2")
    response = test_client.get(f"/api/leads/{lead['id']}")
    assert response.status_code == 404
    assert response.json()["code"] == "lead_get_failed"

    set_actor("tl_north")
    assert test_client.get(f"/api/leads/{lead['id']}").status_code == 200

    set_actor("rm2")
    update = test_client.put(f"/api/leads/{lead['id']}", json=_update_payload(lead))
    assert update.status_code == 404


def test_list_is_scoped_and_masked_by_role(
    client: tuple[TestClient, Callable[[str], None]],
    directory: Directory,
) -> None:
    test_client, set_actor = client
    _create(test_client, fullName="Mine", phone="9000000001", assigned_to=directory.id("rm1"))
    _create(test_client, fullName="Theirs", phone="9000000002", assigned_to=directory.id("rm2"))
    _create(test_client, fullName="Nobody", phone="9000000003")

    admin_view = test_client.get("/api/leads").json()
    assert {lead["fullName"] for lead in admin_view} == {"Mine", "Theirs", "Nobody"}
    assert {lead["phone"] for lead in admin_view} == {"9000000001", "9000000002", "9000000003"}

    set_actor("rm1")
    rm_view = test_client.get("/api/leads").json()
    assert [lead["fullName"] for lead in rm_view] == ["Mine"]
    assert rm_view[0]["phone"] == "90******"


def test_relationship_manager_cannot_reassign_on_update(
    client: tuple[TestClient, Callable[[str], None]],
    directory: Directory,
) -> None:
    test_client, set_actor = client
    set_actor("rm1")
    lead = _create(test_client)

    response = test_client.put(
        f"/api/leads/{lead['id']}",
        json=_update_payload(
            lead,
            assigned_to=directory.id("rm2"),
            team_id=str(directory.teams["south"]),
            profession="Engineer",
        ),
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["assigned_to"] == directory.id("rm1")
    assert body["team_id"] == str(directory.teams["north"])
    assert body["assigned_at"] == lead["assigned_at"]
    assert body["profession"] == "Engineer"


def test_masked_phone_round_trip_keeps_stored_number(
    client: tuple[TestClient, Callable[[str], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    set_actor("rm1")
    lead = _create(test_client)
    assert lead["phone"] == "98******"

    response = test_client.put(f"/api/leads/{lead['id']}", json=_update_payload(lead, fullName="Asha R"))

    assert response.status_code == 200
    stored = db_session.scalar(select(Lead).where(Lead.id == uuid.UUID(lead["id"])))
    db_session.refresh(stored)
    assert stored.phone == "9876543210"
    assert stored.full_name == "Asha R"


def test_admin_reassign_on_update_stamps_assigned_at_once(
    client: tuple[TestClient, Callable[[str], None]],
    directory: Directory,
) -> None:
    test_client, _ = client
    lead = _create(test_client, assigned_to=directory.id("rm1"))

    moved = test_client.put(f"/api/leads/{lead['id']}", json=_update_payload(lead, assigned_to=directory.id("rm2")))
    assert moved.status_code == 200
    moved_body = moved.json()
    assert moved_body["assigned_to"] == directory.id("rm2")
    assert moved_body["team_id"] == str(directory.teams["north"])

    again = test_client.put(f"/api/leads/{lead['id']}", json=_update_payload(lead, assigned_to=directory.id("rm2")))
    assert again.json()["assigned_at"] == moved_body["assigned_at"]

    ignored = test_client.put(
        f"/api/leads/{lead['id']}",
        json=_update_payload(lead, assigned_to=directory.id("rm_inactive")),
    )
    assert ignored.status_code == 200
    assert ignored.json()["assigned_to"] == directory.id("rm2")


def test_update_requires_status_and_unique_phone(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    first = _create(test_client, phone="9000000001")
    second = _create(test_client, phone="9000000002")

    missing = test_client.put(f"/api/leads/{first['id']}", json={"fullName": "X", "phone": "9000000001"})
    assert missing.status_code == 422
    assert missing.json()["details"]["field"] == "status"

    clash = test_client.put(f"/api/leads/{second['id']}", json=_update_payload(second, phone="900-000-0001"))
    assert clash.status_code == 409

    same = test_client.put(f"/api/leads/{first['id']}", json=_update_payload(first))
    assert same.status_code == 200


def test_update_replaces_status_history_from_display_order(
    client: tuple[TestClient, Callable[[str], None]],
    db_session: Session,
) -> None:
    test_client, _ = client
    lead = _create(test_client, note="first")

    history = [
        {"status": "Follow Up", "note": "second", "timestamp": "2026-10-19T10:00:00.000Z"},
        {"status": "New", "note": "first (edited)", "timestamp": "2026-10-19T09:00:00.000Z"},
    ]
    response = test_client.put(
        f"/api/leads/{lead['id']}",
        json=_update_payload(lead, status="Follow Up", statusHistory=history),
    )

    assert response.status_code == 200
    assert [entry["note"] for entry in response.json()["statusHistory"]] == ["second", "first (edited)"]
    stored = db_session.scalar(select(Lead.notes).where(Lead.id == uuid.UUID(lead["id"])))
    assert stored == (
        "New__first (edited)__2026-10-19T09:00:00.000Z||Follow Up__second__2026-10-19T10:00:00.000Z"
    )

    bad = test_client.put(
        f"/api/leads/{lead['id']}",
        json=_update_payload(lead, statusHistory=[{"status": "New", "note": "a__b", "timestamp": "t"}]),
    )
    assert bad.status_code == 422
    assert bad.json()["details"]["field"] == "note"


def test_concurrent_updates_are_last_write_wins(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    lead = _create(test_client)
    first_view = test_client.get(f"/api/leads/{lead['id']}").json()
    second_view = test_client.get(f"/api/leads/{lead['id']}").json()

    test_client.put(
        f"/api/leads/{lead['id']}",
        json=_update_payload(first_view, statusHistory=[{"status": "Busy", "note": "writer one", "timestamp": "t1"}]),
    )
    test_client.put(
        f"/api/leads/{lead['id']}",
        json=_update_payload(second_view, statusHistory=[{"status": "Ringing", "note": "writer two", "timestamp": "t2"}]),
    )

    final = test_client.get(f"/api/leads/{lead['id']}").json()
    assert [entry["note"] for entry in final["statusHistory"]] == ["writer two"]


def test_dedicated_assign(client: tuple[TestClient, Callable[[str], None]], directory: Directory) -> None:
    test_client, set_actor = client
    lead = _create(test_client)

    # No status check on this path, unlike create and update.
    inactive = test_client.patch(f"/api/leads/{lead['id']}/assign", json={"assigned_to": directory.id("rm_inactive")})
    assert inactive.status_code == 200
    assert inactive.json()["assigned_to"] == directory.id("rm_inactive")
    assert inactive.json()["team_id"] == str(directory.teams["south"])

    unknown = test_client.patch(f"/api/leads/{lead['id']}/assign", json={"assigned_to": str(uuid.uuid4())})
    assert unknown.status_code == 404
    assert unknown.json()["code"] == "lead_assign_failed"

    missing = test_client.patch(f"/api/leads/{lead['id']}/assign", json={})
    assert missing.status_code == 422

    set_actor("rm1")
    forbidden = test_client.patch(f"/api/leads/{lead['id']}/assign", json={"assigned_to": directory.id("rm1")})
    assert forbidden.status_code == 403


def test_append_note_moves_status(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    lead = _create(test_client, note="created")

    response = test_client.post(f"/api/leads/{lead['id']}/notes", json={"status": "Busy", "note": "no answer"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "Busy"
    assert [entry["status"] for entry in body["statusHistory"]] == ["Busy", "New"]
    assert body["statusHistory"][0]["note"] == "no answer"

    invalid = test_client.post(f"/api/leads/{lead['id']}/notes", json={"status": "Sleeping", "note": "x"})
    assert invalid.status_code == 422


def test_payments_are_recorded_unapproved_and_approved_by_finance(
    client: tuple[TestClient, Callable[[str], None]],
    directory: Directory,
) -> None:
    test_client, set_actor = client
    set_actor("rm1")
    lead = _create(test_client)

    recorded = test_client.post(
        f"/api/leads/{lead['id']}/payments",
        json={"amount": "1500", "packageTier": "Basic"},
    )
    assert recorded.status_code == 200
    payment = recorded.json()["paymentHistory"][0]
    assert payment["approved"] is False
    assert payment["assigned_to"] == directory.id("rm1")
    assert payment["assigned_to_name"] == "RM1"
    assert payment["packageTier"] == "Basic"

    bad_amount = test_client.post(f"/api/leads/{lead['id']}/payments", json={"amount": "1.2.3"})
    assert bad_amount.status_code == 422

    denied = test_client.post(f"/api/leads/{lead['id']}/payments/0/approve", json={"utr": "UTR-1"})
    assert denied.status_code == 403

    set_actor("super_admin")
    blank = test_client.post(f"/api/leads/{lead['id']}/payments/0/approve", json={"utr": " "})
    assert blank.status_code == 422
    approved = test_client.post(f"/api/leads/{lead['id']}/payments/0/approve", json={"utr": "UTR-1"})
    assert approved.status_code == 200
    assert approved.json()["paymentHistory"][0]["approved"] is True
    assert approved.json()["paymentHistory"][0]["utr"] == "UTR-1"


def test_update_payment_history_never_approves_new_rows(
    client: tuple[TestClient, Callable[[str], None]],
    directory: Directory,
) -> None:
    test_client, set_actor = client
    set_actor("rm1")
    lead = _create(test_client)
    test_client.post(f"/api/leads/{lead['id']}/payments", json={"amount": "100"})
    current = test_client.get(f"/api/leads/{lead['id']}").json()

    payments = [
        {"amount": "250", "utr": "UTR-9", "approved": True, "isNew": True},
        {"amount": "", "isNew": True},
        {**current["paymentHistory"][0], "utr": "UTR-8", "approved": True},
    ]
    response = test_client.put(f"/api/leads/{lead['id']}", json=_update_payload(current, paymentHistory=payments))

    assert response.status_code == 200, response.text
    history = response.json()["paymentHistory"]
    assert [entry["amount"] for entry in history] == ["250", "100"]
    assert [entry["approved"] for entry in history] == [False, False]
    assert history[0]["assigned_to"] == directory.id("rm1")


def _approved_payment_lead(test_client: TestClient, set_actor: Callable[[str], None]) -> dict[str, Any]:
    set_actor("rm1")
    lead = _create(test_client)
    test_client.post(f"/api/leads/{lead['id']}/payments", json={"amount": "1000"})
    set_actor("super_admin")
    test_client.post(f"/api/leads/{lead['id']}/payments/0/approve", json={"utr": "UTR1"})
    test_client.post(f"/api/leads/{lead['id']}/payments", json={"amount": "5"})
    test_client.post(f"/api/leads/{lead['id']}/notes", json={"status": "Won", "note": "closed"})
    set_actor("rm1")
    return test_client.get(f"/api/leads/{lead['id']}").json()


def test_update_cannot_drop_saved_payments(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    lead = _approved_payment_lead(test_client, set_actor)
    newest_only = lead["paymentHistory"][:1]

    response = test_client.put(f"/api/leads/{lead['id']}", json=_update_payload(lead, paymentHistory=newest_only))

    assert response.status_code == 422
    assert response.json()["details"]["field"] == "paymentHistory"
    stored = test_client.get(f"/api/leads/{lead['id']}").json()["paymentHistory"]
    assert [(entry["amount"], entry["approved"], entry["utr"]) for entry in stored] == [
        ("5", False, ""),
        ("1000", True, "UTR1"),
    ]


def test_update_cannot_change_an_approved_amount(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    lead = _approved_payment_lead(test_client, set_actor)
    edited = [dict(entry) for entry in lead["paymentHistory"]]
    edited[1]["amount"] = "999999"

    response = test_client.put(f"/api/leads/{lead['id']}", json=_update_payload(lead, paymentHistory=edited))

    assert response.status_code == 200, response.text
    assert [entry["amount"] for entry in response.json()["paymentHistory"]] == ["5", "1000"]
    set_actor("super_admin")
    summary = test_client.get("/api/leads/sales-summary").json()
    assert Decimal(str(summary["totalSales"])) == Decimal("1000")


def test_unflagged_row_on_empty_history_is_stored_unapproved(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    set_actor("super_admin")
    lead = _create(test_client)

    response = test_client.put(
        f"/api/leads/{lead['id']}",
        json=_update_payload(lead, paymentHistory=[{"amount": "500", "utr": "UTR9"}]),
    )

    assert response.status_code == 200, response.text
    assert [(entry["amount"], entry["approved"]) for entry in response.json()["paymentHistory"]] == [("500", False)]


def test_relationship_manager_can_only_add_status_history(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    set_actor("rm1")
    lead = _create(test_client, note="created")
    lead = test_client.post(f"/api/leads/{lead['id']}/notes", json={"status": "Busy", "note": "no answer"}).json()
    saved = lead["statusHistory"]

    cleared = test_client.put(f"/api/leads/{lead['id']}", json=_update_payload(lead, statusHistory=[]))
    assert cleared.status_code == 422
    assert cleared.json()["details"]["field"] == "statusHistory"

    rewritten = [{**saved[0], "note": "answered"}, saved[1]]
    assert test_client.put(
        f"/api/leads/{lead['id']}", json=_update_payload(lead, statusHistory=rewritten)
    ).status_code == 422
    assert test_client.get(f"/api/leads/{lead['id']}").json()["statusHistory"] == saved

    added = [{"status": "Follow Up", "note": "call at 5", "timestamp": ""}, *saved]
    response = test_client.put(
        f"/api/leads/{lead['id']}",
        json=_update_payload(lead, status="Follow Up", statusHistory=added),
    )
    assert response.status_code == 200, response.text
    history = response.json()["statusHistory"]
    assert [entry["note"] for entry in history] == ["call at 5", "no answer", "created"]
    assert history[1:] == saved


def test_sales_summary_totals_approved_client_payments(
    client: tuple[TestClient, Callable[[str], None]],
    directory: Directory,
) -> None:
    test_client, set_actor = client
    set_actor("super_admin")
    won = _create(test_client, phone="9000000001", assigned_to=directory.id("rm1"))
    pipeline = _create(test_client, phone="9000000002", assigned_to=directory.id("rm1"))
    for lead in (won, pipeline):
        test_client.post(f"/api/leads/{lead['id']}/payments", json={"amount": "1500"})
        test_client.post(f"/api/leads/{lead['id']}/payments", json={"amount": "700"})
        test_client.post(f"/api/leads/{lead['id']}/payments/0/approve", json={"utr": f"UTR-{lead['phone']}"})
    test_client.post(f"/api/leads/{won['id']}/notes", json={"status": "Won", "note": "closed"})

    summary = test_client.get("/api/leads/sales-summary")

    assert summary.status_code == 200
    body = summary.json()
    assert Decimal(str(body["totalSales"])) == Decimal("700")
    assert body["paidClients"] == 1
    assert {key: Decimal(str(value)) for key, value in body["byRelationshipManager"].items()} == {
        directory.id("rm1"): Decimal("700")
    }


def test_stage_and_field_filters(client: tuple[TestClient, Callable[[str], None]], directory: Directory) -> None:
    test_client, _ = client
    won = _create(test_client, fullName="Closed Deal", phone="9000000001", tags="vip, nifty")
    _create(test_client, fullName="Open Deal", phone="9000000002", assigned_to=directory.id("rm1"), tags="options")
    test_client.post(f"/api/leads/{won['id']}/notes", json={"status": "Won", "note": ""})

    def names(**params: str) -> set[str]:
        response = test_client.get("/api/leads", params=params)
        assert response.status_code == 200
        return {lead["fullName"] for lead in response.json()}

    assert names(stage="clients") == {"Closed Deal"}
    assert names(stage="pipeline") == {"Open Deal"}
    assert names() == {"Closed Deal", "Open Deal"}
    assert names(assignment="unassigned") == {"Closed Deal"}
    assert names(assignment="assigned") == {"Open Deal"}
    assert names(assignment=directory.id("rm1")) == {"Open Deal"}
    assert names(tag="VIP") == {"Closed Deal"}
    assert names(name="open") == {"Open Deal"}
    assert names(status="Won") == {"Closed Deal"}
    today = datetime.now(timezone.utc).date()
    assert names(created_from=today.isoformat(), created_to=today.isoformat()) == {"Closed Deal", "Open Deal"}
    assert names(created_from=(today + timedelta(days=2)).isoformat()) == set()


def test_new_count_uses_previous_login(
    client: tuple[TestClient, Callable[[str], None]],
    db_session: Session,
    directory: Directory,
) -> None:
    test_client, set_actor = client
    rm1 = directory.users["rm1"]
    rm1.last_login = datetime.now(timezone.utc) - timedelta(hours=1)
    db_session.commit()
    _create(test_client, phone="9000000001", assigned_to=directory.id("rm1"))
    _create(test_client, phone="9000000002", assigned_to=directory.id("rm2"))

    set_actor("rm1")
    response = test_client.get("/api/leads/new-count")

    assert response.status_code == 200
    assert response.json() == {"newLeadsCount": 1, "pollIntervalSeconds": 30}

    set_actor("admin")
    assert test_client.get("/api/leads/new-count").json()["newLeadsCount"] == 0
