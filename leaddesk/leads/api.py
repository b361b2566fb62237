from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leaddesk.context import get_correlation_id
from leaddesk.core.auth import AuthUser, get_current_user as get_auth_user
from leaddesk.core.context import bind_actor, request_context
from leaddesk.core.database import get_db
from leaddesk.leads.assignment import parse_reference
from leaddesk.leads.filters import LeadFilter, StageView
from leaddesk.leads.import_export import LeadImportService
from leaddesk.leads.models import User
from leaddesk.leads.schemas import (
    LeadAssignRequest,
    LeadCreate,
    LeadImportResult,
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
)
from leaddesk.leads.service import ActorUser, AuthService, LeadService, TeamService

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
leads_router = APIRouter(prefix="/api/leads", tags=["leads"])
teams_router = APIRouter(prefix="/api/teams", tags=["teams"])
auth_service = AuthService()
lead_service = LeadService()
lead_import_service = LeadImportService()
team_service = TeamService()


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    context = request_context(request)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=get_correlation_id() or context.correlation_id or None,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def _failure(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    detail = exc.detail
    message = detail.get("reason", str(detail)) if isinstance(detail, dict) else str(detail)
    return error_response(request, status_code=exc.status_code, code=code, message=message, details=detail)


def get_current_user(
    request: Request,
    auth_user: AuthUser = Depends(get_auth_user),
    db: Session = Depends(get_db),
) -> ActorUser:
    correlation_id = get_correlation_id() or request_context(request).correlation_id or None
    user_id = parse_reference(auth_user.sub)
    user = db.get(User, user_id) if user_id is not None else None
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unknown user")
    bind_actor(request, str(user.id), auth_user.role)
    return ActorUser(
        user_id=str(user.id),
        role=auth_user.role,
        team_id=str(user.team_id) if user.team_id else None,
        correlation_id=correlation_id,
    )


@auth_router.post("/login", response_model=LoginResponse)
def login(
    request: Request,
    dto: LoginRequest,
    db: Session = Depends(get_db),
) -> LoginResponse | JSONResponse:
    try:
        return auth_service.login(db, dto)
    except HTTPException as exc:
        return _failure(request, exc, "auth_login_failed")


@leads_router.get("", response_model=list[LeadRead])
def list_leads(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    assignment: str | None = Query(default=None),
    tag: str | None = Query(default=None),
    name: str | None = Query(default=None),
    created_from: date | None = Query(default=None),
    created_to: date | None = Query(default=None),
    stage: StageView = Query(default=StageView.ALL),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[LeadRead] | JSONResponse:
    try:
        return lead_service.list_leads(
            db,
            user,
            LeadFilter(
                status=status_filter,
                assignment=assignment,
                tag=tag,
                name=name,
                created_from=created_from,
                created_to=created_to,
                stage=stage,
            ),
        )
    except HTTPException as exc:
        return _failure(request, exc, "lead_list_failed")


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.create_lead(db, user, dto)
    except HTTPException as exc:
        return _failure(request, exc, "lead_create_failed")


@leads_router.get("/new-count", response_model=NewLeadsCountRead)
def new_leads_count(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> NewLeadsCountRead | JSONResponse:
    try:
        return lead_service.new_leads_count(db, user)
    except HTTPException as exc:
        return _failure(request, exc, "lead_new_count_failed")


@leads_router.get("/sales-summary", response_model=SalesSummaryRead)
def sales_summary(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SalesSummaryRead | JSONResponse:
    try:
        return lead_service.sales_summary(db, user)
    except HTTPException as exc:
        return _failure(request, exc, "lead_sales_summary_failed")


@leads_router.post("/import", response_model=LeadImportResult)
def import_leads(
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadImportResult | JSONResponse:
    try:
        content = file.file.read()
        return lead_import_service.import_leads(db, user, file.filename, content)
    except HTTPException as exc:
        return _failure(request, exc, "lead_import_failed")


@leads_router.get("/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.get_lead(db, user, lead_id)
    except HTTPException as exc:
        return _failure(request, exc, "lead_get_failed")


@leads_router.put("/{lead_id}", response_model=LeadRead)
def update_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.update_lead(db, user, lead_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "lead_update_failed")


@leads_router.patch("/{lead_id}/assign", response_model=LeadRead)
def assign_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadAssignRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.assign_lead(db, user, lead_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "lead_assign_failed")


@leads_router.post("/{lead_id}/notes", response_model=LeadRead)
def append_note(
    request: Request,
    lead_id: uuid.UUID,
    dto: NoteAppendRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.append_note(db, user, lead_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "lead_note_failed")


@leads_router.post("/{lead_id}/payments", response_model=LeadRead)
def append_payment(
    request: Request,
    lead_id: uuid.UUID,
    dto: PaymentAppendRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.append_payment(db, user, lead_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "lead_payment_failed")


@leads_router.post("/{lead_id}/payments/{index}/approve", response_model=LeadRead)
def approve_payment(
    request: Request,
    lead_id: uuid.UUID,
    index: int,
    dto: PaymentApproveRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.approve_payment(db, user, lead_id, index, dto)
    except HTTPException as exc:
        return _failure(request, exc, "lead_payment_approve_failed")


@teams_router.get("", response_model=list[TeamRead])
def list_teams(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[TeamRead] | JSONResponse:
    try:
        return team_service.list_teams(db)
    except HTTPException as exc:
        return _failure(request, exc, "team_list_failed")


@teams_router.post("", response_model=TeamRead, status_code=status.HTTP_201_CREATED)
def create_team(
    request: Request,
    dto: TeamWrite,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TeamRead | JSONResponse:
    try:
        return team_service.create_team(db, user, dto)
    except HTTPException as exc:
        return _failure(request, exc, "team_create_failed")


@teams_router.put("/{team_id}", response_model=TeamRead)
def update_team(
    request: Request,
    team_id: uuid.UUID,
    dto: TeamWrite,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TeamRead | JSONResponse:
    try:
        return team_service.update_team(db, user, team_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "team_update_failed")


@teams_router.delete("/{team_id}", response_model=None)
def delete_team(
    request: Request,
    team_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> dict[str, str] | JSONResponse:
    try:
        return team_service.delete_team(db, user, team_id)
    except HTTPException as exc:
        return _failure(request, exc, "team_delete_failed")
