from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class StatusHistoryItem(BaseModel):
    status: str = ""
    note: str = ""
    timestamp: str = ""


class PaymentHistoryRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: str
    date: str
    utr: str = ""
    approved: bool = False
    assigned_to: str = ""
    assigned_to_name: str = ""
    package_tier: str = Field(default="", alias="packageTier")


class PaymentHistoryInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: str = ""
    date: str = ""
    utr: str = ""
    approved: bool = False
    assigned_to: str = ""
    assigned_to_name: str = ""
    package_tier: str = Field(default="", alias="packageTier")
    is_new: bool = Field(default=False, alias="isNew")


class _LeadFields(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    full_name: str | None = Field(default=None, alias="fullName")
    phone: str | None = None
    email: EmailStr | None = None
    alt_number: str | None = Field(default=None, alias="altNumber")
    deemat_account_name: str | None = Field(default=None, alias="deematAccountName")
    profession: str | None = None
    state_name: str | None = Field(default=None, alias="stateName")
    capital: str | None = None
    segment: str | None = None
    gender: str | None = None
    dob: str | None = None
    age: int | None = None
    pan_card_number: str | None = Field(default=None, alias="panCardNumber")
    aadhar_card_number: str | None = Field(default=None, alias="aadharCardNumber")
    status: str | None = None
    tags: str | None = None
    language: str | None = None
    team_id: str | None = None
    assigned_to: str | None = None

    @field_validator("email", mode="before")
    @classmethod
    def _blank_email_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class LeadCreate(_LeadFields):
    note: str | None = None


class LeadUpdate(_LeadFields):
    status_history: list[StatusHistoryItem] | None = Field(default=None, alias="statusHistory")
    payment_history: list[PaymentHistoryInput] | None = Field(default=None, alias="paymentHistory")


class LeadAssignRequest(BaseModel):
    assigned_to: str | None = None


class NoteAppendRequest(BaseModel):
    status: str
    note: str = ""


class PaymentAppendRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: str
    package_tier: str = Field(default="", alias="packageTier")


class PaymentApproveRequest(BaseModel):
    utr: str = ""


class LeadRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: UUID
    full_name: str = Field(alias="fullName")
    phone: str
    email: str | None = None
    alt_number: str | None = Field(default=None, alias="altNumber")
    deemat_account_name: str | None = Field(default=None, alias="deematAccountName")
    profession: str | None = None
    state_name: str | None = Field(default=None, alias="stateName")
    capital: str | None = None
    segment: str | None = None
    gender: str | None = None
    dob: str | None = None
    age: int | None = None
    pan_card_number: str | None = Field(default=None, alias="panCardNumber")
    aadhar_card_number: str | None = Field(default=None, alias="aadharCardNumber")
    status: str
    tags: str | None = None
    language: str | None = None
    team_id: UUID | None = None
    assigned_to: UUID | None = None
    assigned_user_name: str | None = Field(default=None, alias="assignedUserName")
    assigned_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    status_history: list[StatusHistoryItem] = Field(default_factory=list, alias="statusHistory")
    payment_history: list[PaymentHistoryRead] = Field(default_factory=list, alias="paymentHistory")


class NewLeadsCountRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_leads_count: int = Field(alias="newLeadsCount")
    poll_interval_seconds: int = Field(alias="pollIntervalSeconds")


class SalesSummaryRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_sales: Decimal = Field(alias="totalSales")
    paid_clients: int = Field(alias="paidClients")
    by_relationship_manager: dict[str, Decimal] = Field(default_factory=dict, alias="byRelationshipManager")


class ImportSkippedRow(BaseModel):
    row: int
    reason: str


class LeadImportResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    total_parsed: int = Field(alias="totalParsed")
    valid_inserted: int = Field(alias="validInserted")
    skipped: list[ImportSkippedRow] = Field(default_factory=list)


class TeamWrite(BaseModel):
    name: str | None = None


class TeamRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    created_at: datetime


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class UserRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: UUID
    email: str
    display_name: str | None = Field(default=None, alias="displayName")
    role: str
    status: str
    team_id: UUID | None = None
    is_active: bool


class LoginResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str
    user: UserRead
    new_leads_count: int = Field(alias="newLeadsCount")
