from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from leaddesk.core.auth import create_access_token, verify_password
from leaddesk.core.config import get_settings
from leaddesk.leads.assignment import FRONT_LINE_ROLES, AssignmentResolver, AssignmentState, parse_reference
from leaddesk.leads.errors import (
    DuplicatePhoneError,
    LeadValidationError,
    ReferenceNotFoundError,
)
from leaddesk.leads.filters import LeadFilter
from leaddesk.leads.history import (
    KNOWN_STATUSES,
    LeadStatus,
    PaymentEntry,
    StatusHistoryEntry,
    SubmittedPayment,
    append_status_entry,
    approve_payment,
    decode_payment_history,
    decode_payment_history_for_display,
    decode_status_history,
    decode_status_history_for_display,
    encode_payment_history,
    encode_status_history,
    encode_status_history_from_display,
    extend_status_history,
    merge_payment_history,
    now_timestamp,
    summarize_sales,
    validate_amount,
    validate_package_tier,
)
from leaddesk.leads.models import Lead, Team, User
from leaddesk.leads.notifier import count_new_assignments
from leaddesk.leads.repositories import LeadRepository, SqlUserDirectory
from leaddesk.leads.schemas import (
    LeadAssignRequest,
    LeadCreate,
    LeadRead,
    LeadUpdate,
    LoginRequest,
    LoginResponse,
    NewLeadsCountRead,
    NoteAppendRequest,
    PaymentAppendRequest,
    PaymentApproveRequest,
    SalesSummaryRead,
    TeamRead,
    TeamWrite,
    UserRead,
)
from leaddesk.platform.security.context import AuthContext
from leaddesk.platform.security.errors import AuthorizationError, ForbiddenRoleError
from leaddesk.platform.security.fls import mask_phone


logger = logging.getLogger("leaddesk.leads")

PAYMENT_APPROVER_ROLES = frozenset({"financial_manager", "super_admin"})
ASSIGNER_ROLES = frozenset({"super_admin", "admin", "team_leader"})
ADMIN_ROLES = frozenset({"super_admin", "admin"})

# Profile fields copied verbatim from the request body.
PROFILE_FIELDS = (
    "email",
    "alt_number",
    "deemat_account_name",
    "profession",
    "state_name",
    "capital",
    "segment",
    "gender",
    "dob",
    "age",
    "pan_card_number",
    "aadhar_card_number",
    "tags",
    "language",
)

_NON_DIGITS_RE = re.compile(r"\D")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_phone(raw: str | None) -> str:
    return _NON_DIGITS_RE.sub("", raw or "")


def validate_phone(raw: str | None) -> str:
    phone = normalize_phone(raw)
    if not phone:
        raise LeadValidationError("phone", "phone is required")
    if len(phone) != 10:
        raise LeadValidationError("phone", "phone must contain exactly 10 digits")
    return phone


def validate_status(raw: str | None) -> str:
    value = (raw or "").strip()
    if not value:
        raise LeadValidationError("status", "status is required")
    if value not in KNOWN_STATUSES:
        raise LeadValidationError("status", f"unknown status '{value}'")
    return value


def validate_full_name(raw: str | None) -> str:
    value = (raw or "").strip()
    if not value:
        raise LeadValidationError("fullName", "full name is required")
    return value


def _unmasked_phone(submitted: str | None, stored: str) -> str:
    # Masked readers send back the masked value they were shown.
    if submitted is not None and submitted.strip() == mask_phone(stored):
        return stored
    return validate_phone(submitted)


@dataclass
class ActorUser:
    user_id: str
    role: str
    team_id: str | None = None
    correlation_id: str | None = None


def to_auth_context(actor_user: ActorUser) -> AuthContext:
    return AuthContext(
        user_id=actor_user.user_id,
        role=(actor_user.role or "").lower(),
        team_id=actor_user.team_id,
        correlation_id=actor_user.correlation_id,
    )


@contextmanager
def domain_errors() -> Iterator[None]:
    """Translate lead domain failures into HTTP errors."""

    try:
        yield
    except DuplicatePhoneError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.as_details()) from exc
    except LeadValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.as_details()) from exc
    except ReferenceNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except AuthorizationError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


def require_role(ctx: AuthContext, allowed: frozenset[str], action: str) -> None:
    if ctx.role not in allowed:
        raise ForbiddenRoleError(ctx.role, action)


class LeadService:
    entity_type = "lead"

    def __init__(self) -> None:
        self.repository = LeadRepository()

    def create_lead(self, session: Session, actor_user: ActorUser, dto: LeadCreate) -> LeadRead:
        ctx = to_auth_context(actor_user)
        with domain_errors():
            full_name = validate_full_name(dto.full_name)
            phone = validate_phone(dto.phone)
            lead_status = validate_status(dto.status or LeadStatus.NEW.value)
            if self.repository.phone_taken(session, phone):
                raise DuplicatePhoneError(phone)

            directory = SqlUserDirectory(session)
            assignment = AssignmentResolver(directory).resolve_create(ctx, dto.assigned_to, dto.team_id)
            notes = None
            if dto.note and dto.note.strip():
                notes = encode_status_history(
                    [StatusHistoryEntry(status=lead_status, note=dto.note.strip(), timestamp=now_timestamp())]
                )

        payload = dto.model_dump(include=set(PROFILE_FIELDS))
        if payload.get("email") is not None:
            payload["email"] = str(payload["email"])
        lead = Lead(
            id=uuid.uuid4(),
            full_name=full_name,
            phone=phone,
            status=lead_status,
            notes=notes,
            team_id=assignment.team_id,
            assigned_to=assignment.assigned_to,
            assigned_at=assignment.assigned_at,
            **payload,
        )
        session.add(lead)
        self._commit(session, operation="create", lead_id=lead.id, phone=phone)
        logger.info(
            "lead.created",
            extra={
                "lead_id": str(lead.id),
                "user_id": ctx.user_id,
                "role": ctx.role,
                "assigned_to": str(assignment.assigned_to) if assignment.assigned_to else None,
            },
        )
        return self._read_one(session, ctx, lead.id)

    def list_leads(self, session: Session, actor_user: ActorUser, lead_filter: LeadFilter) -> list[LeadRead]:
        ctx = to_auth_context(actor_user)
        leads = lead_filter.apply(self.repository.list_visible(session, ctx))
        names = SqlUserDirectory(session).display_names(lead.assigned_to for lead in leads)
        records = self.repository.apply_read_security_many([self._record(lead, names) for lead in leads], ctx)
        return [LeadRead.model_validate(record) for record in records]

    def get_lead(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> LeadRead:
        ctx = to_auth_context(actor_user)
        self._visible_or_404(session, ctx, lead_id)
        return self._read_one(session, ctx, lead_id)

    def update_lead(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID, dto: LeadUpdate) -> LeadRead:
        ctx = to_auth_context(actor_user)
        lead = self._visible_or_404(session, ctx, lead_id)

        with domain_errors():
            full_name = validate_full_name(dto.full_name)
            phone = _unmasked_phone(dto.phone, lead.phone)
            lead_status = validate_status(dto.status)
            if self.repository.phone_taken(session, phone, exclude_id=lead.id):
                raise DuplicatePhoneError(phone)

            directory = SqlUserDirectory(session)
            current = AssignmentState(assigned_to=lead.assigned_to, team_id=lead.team_id, assigned_at=lead.assigned_at)
            assignment = AssignmentResolver(directory).resolve_update(ctx, current, dto.assigned_to, dto.team_id)

            values: dict[str, Any] = {
                key: value for key, value in dto.model_dump(include=set(PROFILE_FIELDS), exclude_unset=True).items()
            }
            if values.get("email") is not None:
                values["email"] = str(values["email"])
            values.update(
                full_name=full_name,
                phone=phone,
                status=lead_status,
                team_id=assignment.team_id,
                assigned_to=assignment.assigned_to,
                assigned_at=assignment.assigned_at,
                updated_at=utcnow(),
            )

            if dto.status_history is not None:
                submitted = [
                    StatusHistoryEntry(status=item.status, note=item.note, timestamp=item.timestamp or now_timestamp())
                    for item in dto.status_history
                ]
                if ctx.role.lower() in FRONT_LINE_ROLES:
                    # Front-line roles may only add entries on top of the saved log.
                    values["notes"] = encode_status_history(
                        extend_status_history(decode_status_history(lead.notes), submitted)
                    )
                else:
                    values["notes"] = encode_status_history_from_display(submitted)
            if dto.payment_history is not None:
                credited_name = ""
                if assignment.assigned_to is not None:
                    credited_name = directory.display_names([assignment.assigned_to]).get(assignment.assigned_to, "")
                merged = merge_payment_history(
                    # Blank legacy dates stay blank so echoed rows still line up.
                    decode_payment_history(lead.payment_history, now=lambda: ""),
                    [
                        SubmittedPayment(
                            amount=item.amount,
                            date=item.date,
                            utr=item.utr,
                            assigned_to=item.assigned_to,
                            assigned_to_name=item.assigned_to_name,
                            package_tier=item.package_tier,
                            is_new=item.is_new,
                        )
                        for item in dto.payment_history
                    ],
                    can_approve=ctx.role in PAYMENT_APPROVER_ROLES,
                    credited_to=str(assignment.assigned_to) if assignment.assigned_to else "",
                    credited_name=credited_name,
                )
                values["payment_history"] = encode_payment_history(merged)

        self._write(session, lead.id, values, operation="update", phone=phone)
        logger.info(
            "lead.updated",
            extra={
                "lead_id": str(lead.id),
                "user_id": ctx.user_id,
                "role": ctx.role,
                "assigned_to": str(assignment.assigned_to) if assignment.assigned_to else None,
            },
        )
        return self._read_one(session, ctx, lead.id)

    def assign_lead(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: LeadAssignRequest,
    ) -> LeadRead:
        ctx = to_auth_context(actor_user)
        with domain_errors():
            require_role(ctx, ASSIGNER_ROLES, "assign leads")
        lead = self._visible_or_404(session, ctx, lead_id)

        with domain_errors():
            current = AssignmentState(assigned_to=lead.assigned_to, team_id=lead.team_id, assigned_at=lead.assigned_at)
            assignment = AssignmentResolver(SqlUserDirectory(session)).resolve_assign(current, dto.assigned_to)

        self._write(
            session,
            lead.id,
            {
                "assigned_to": assignment.assigned_to,
                "team_id": assignment.team_id,
                "assigned_at": assignment.assigned_at,
                "updated_at": utcnow(),
            },
            operation="assign",
        )
        logger.info(
            "lead.assigned",
            extra={
                "lead_id": str(lead.id),
                "user_id": ctx.user_id,
                "role": ctx.role,
                "assigned_to": str(assignment.assigned_to),
            },
        )
        return self._read_one(session, ctx, lead.id)

    def append_note(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: NoteAppendRequest,
    ) -> LeadRead:
        ctx = to_auth_context(actor_user)
        lead = self._visible_or_404(session, ctx, lead_id)
        with domain_errors():
            lead_status = validate_status(dto.status)
            notes = append_status_entry(lead.notes, lead_status, dto.note.strip())
        self._write(
            session,
            lead.id,
            {"notes": notes, "status": lead_status, "updated_at": utcnow()},
            operation="append note to",
        )
        return self._read_one(session, ctx, lead.id)

    def append_payment(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: PaymentAppendRequest,
    ) -> LeadRead:
        ctx = to_auth_context(actor_user)
        lead = self._visible_or_404(session, ctx, lead_id)
        with domain_errors():
            credited_name = ""
            if lead.assigned_to is not None:
                credited_name = SqlUserDirectory(session).display_names([lead.assigned_to]).get(lead.assigned_to, "")
            entries = decode_payment_history(lead.payment_history)
            entries.append(
                PaymentEntry(
                    amount=validate_amount(dto.amount),
                    date=now_timestamp(),
                    approved=False,
                    assigned_to=str(lead.assigned_to) if lead.assigned_to else "",
                    assigned_to_name=credited_name,
                    package_tier=validate_package_tier(dto.package_tier),
                )
            )
            encoded = encode_payment_history(entries)
        self._write(
            session,
            lead.id,
            {"payment_history": encoded, "updated_at": utcnow()},
            operation="record payment on",
        )
        return self._read_one(session, ctx, lead.id)

    def approve_payment(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        index: int,
        dto: PaymentApproveRequest,
    ) -> LeadRead:
        ctx = to_auth_context(actor_user)
        with domain_errors():
            require_role(ctx, PAYMENT_APPROVER_ROLES, "approve payments")
        lead = self._visible_or_404(session, ctx, lead_id)
        with domain_errors():
            entries = approve_payment(decode_payment_history(lead.payment_history), index, dto.utr)
            encoded = encode_payment_history(entries)
        self._write(
            session,
            lead.id,
            {"payment_history": encoded, "updated_at": utcnow()},
            operation="approve payment on",
        )
        return self._read_one(session, ctx, lead.id)

    def new_leads_count(self, session: Session, actor_user: ActorUser) -> NewLeadsCountRead:
        ctx = to_auth_context(actor_user)
        count = 0
        user_id = parse_reference(ctx.user_id)
        if user_id is not None:
            count = count_new_assignments(session, user_id, ctx.role, self.repository.last_login(session, user_id))
        return NewLeadsCountRead(
            new_leads_count=count,
            poll_interval_seconds=get_settings().new_lead_poll_interval_seconds,
        )

    def sales_summary(self, session: Session, actor_user: ActorUser) -> SalesSummaryRead:
        ctx = to_auth_context(actor_user)
        leads = self.repository.list_visible(session, ctx)
        summary = summarize_sales((lead.status, lead.payment_history) for lead in leads)
        return SalesSummaryRead(
            total_sales=summary.total_sales,
            paid_clients=summary.paid_clients,
            by_relationship_manager=summary.by_relationship_manager,
        )

    def _visible_or_404(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> Lead:
        lead = self.repository.get_visible(session, ctx, lead_id)
        if lead is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
        return lead

    def _write(
        self,
        session: Session,
        lead_id: uuid.UUID,
        values: dict[str, Any],
        *,
        operation: str,
        phone: str | None = None,
    ) -> None:
        """Persist all changed columns, history strings included, in one UPDATE."""

        try:
            session.execute(update(Lead).where(Lead.id == lead_id).values(**values))
        except IntegrityError as exc:
            session.rollback()
            if phone is None:
                raise self._persistence_failure(exc, operation, lead_id) from exc
            with domain_errors():
                raise DuplicatePhoneError(phone) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise self._persistence_failure(exc, operation, lead_id) from exc
        self._commit(session, operation=operation, lead_id=lead_id, phone=phone)

    def _commit(self, session: Session, *, operation: str, lead_id: uuid.UUID, phone: str | None = None) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            if phone is None:
                raise self._persistence_failure(exc, operation, lead_id) from exc
            with domain_errors():
                raise DuplicatePhoneError(phone) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise self._persistence_failure(exc, operation, lead_id) from exc

    @staticmethod
    def _persistence_failure(exc: Exception, operation: str, lead_id: uuid.UUID) -> HTTPException:
        logger.exception(
            "lead.persist_failed",
            extra={"operation": operation, "lead_id": str(lead_id), "error": str(exc)},
        )
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"failed to {operation} lead")

    def _read_one(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> LeadRead:
        lead = session.get(Lead, lead_id, populate_existing=True)
        if lead is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
        names = SqlUserDirectory(session).display_names([lead.assigned_to])
        return LeadRead.model_validate(self.repository.apply_read_security(self._record(lead, names), ctx))

    @staticmethod
    def _record(lead: Lead, names: dict[uuid.UUID, str]) -> dict[str, Any]:
        return {
            "id": lead.id,
            "full_name": lead.full_name,
            "phone": lead.phone,
            "email": lead.email,
            "alt_number": lead.alt_number,
            "deemat_account_name": lead.deemat_account_name,
            "profession": lead.profession,
            "state_name": lead.state_name,
            "capital": lead.capital,
            "segment": lead.segment,
            "gender": lead.gender,
            "dob": lead.dob,
            "age": lead.age,
            "pan_card_number": lead.pan_card_number,
            "aadhar_card_number": lead.aadhar_card_number,
            "status": lead.status,
            "tags": lead.tags,
            "language": lead.language,
            "team_id": lead.team_id,
            "assigned_to": lead.assigned_to,
            "assigned_user_name": names.get(lead.assigned_to) if lead.assigned_to else None,
            "assigned_at": lead.assigned_at,
            "created_at": lead.created_at,
            "updated_at": lead.updated_at,
            "status_history": [
                {"status": entry.status, "note": entry.note, "timestamp": entry.timestamp}
                for entry in decode_status_history_for_display(lead.notes)
            ],
            "payment_history": [
                {
                    "amount": entry.amount,
                    "date": entry.date,
                    "utr": entry.utr,
                    "approved": entry.approved,
                    "assigned_to": entry.assigned_to,
                    "assigned_to_name": entry.assigned_to_name,
                    "package_tier": entry.package_tier,
                }
                for entry in decode_payment_history_for_display(lead.payment_history)
            ],
        }


class TeamService:
    def list_teams(self, session: Session) -> list[TeamRead]:
        teams = session.scalars(select(Team).order_by(Team.name)).all()
        return [TeamRead.model_validate(team) for team in teams]

    def create_team(self, session: Session, actor_user: ActorUser, dto: TeamWrite) -> TeamRead:
        with domain_errors():
            require_role(to_auth_context(actor_user), ADMIN_ROLES, "manage teams")
            name = self._validate_name(dto)
        team = Team(name=name)
        session.add(team)
        session.commit()
        session.refresh(team)
        return TeamRead.model_validate(team)

    def update_team(self, session: Session, actor_user: ActorUser, team_id: uuid.UUID, dto: TeamWrite) -> TeamRead:
        with domain_errors():
            require_role(to_auth_context(actor_user), ADMIN_ROLES, "manage teams")
            name = self._validate_name(dto)
        team = session.get(Team, team_id)
        if team is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="team not found")
        team.name = name
        session.commit()
        session.refresh(team)
        return TeamRead.model_validate(team)

    def delete_team(self, session: Session, actor_user: ActorUser, team_id: uuid.UUID) -> dict[str, str]:
        with domain_errors():
            require_role(to_auth_context(actor_user), ADMIN_ROLES, "manage teams")
        team = session.get(Team, team_id)
        if team is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="team not found")
        session.delete(team)
        session.commit()
        return {"message": "team deleted"}

    @staticmethod
    def _validate_name(dto: TeamWrite) -> str:
        name = (dto.name or "").strip()
        if not name:
            raise LeadValidationError("name", "team name is required")
        return name


class AuthService:
    def login(self, session: Session, dto: LoginRequest) -> LoginResponse:
        email = (dto.email or "").strip()
        if not email or not dto.password:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="email and password are required")

        user = session.scalar(select(User).where(func.lower(User.email) == email.lower()))
        if user is None or not verify_password(dto.password, user.password_hash):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid credentials")
        if (user.status or "").strip().lower() != "active":
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="account is inactive")

        # Count against the previous login before it is overwritten.
        new_leads = count_new_assignments(session, user.id, user.role, user.last_login)
        user.last_login = utcnow()
        session.commit()
        session.refresh(user)

        logger.info(
            "auth.login",
            extra={"user_id": str(user.id), "role": user.role, "count": new_leads},
        )
        return LoginResponse(
            token=create_access_token(user_id=str(user.id), email=user.email, role=user.role),
            user=UserRead(
                id=user.id,
                email=user.email,
                display_name=user.display_name,
                role=user.role,
                status=user.status,
                team_id=user.team_id,
                is_active=True,
            ),
            new_leads_count=new_leads,
        )
