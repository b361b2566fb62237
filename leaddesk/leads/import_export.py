from __future__ import annotations

import csv
import io
import logging
import uuid
from collections.abc import Iterator
from typing import Any
from zipfile import BadZipFile

from fastapi import HTTPException, status
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from leaddesk.leads.assignment import DirectoryUser, normalize_reference, parse_reference, utcnow
from leaddesk.leads.errors import LeadValidationError
from leaddesk.leads.history import LeadStatus, StatusHistoryEntry, encode_status_history, now_timestamp
from leaddesk.leads.models import Lead
from leaddesk.leads.repositories import LeadRepository, SqlUserDirectory
from leaddesk.leads.schemas import ImportSkippedRow, LeadImportResult
from leaddesk.leads.service import ADMIN_ROLES, ActorUser, domain_errors, normalize_phone, require_role, to_auth_context
from leaddesk.metrics import observe_import_rows
from leaddesk.otel import lead_span


logger = logging.getLogger("leaddesk.leads")

# Normalized header (lower case, no spaces or underscores) -> lead column.
COLUMN_ALIASES = {
    "fullname": "full_name",
    "name": "full_name",
    "email": "email",
    "phone": "phone",
    "alternatenumber": "alt_number",
    "altnumber": "alt_number",
    "notes": "notes",
    "note": "notes",
    "deemataccountname": "deemat_account_name",
    "profession": "profession",
    "statename": "state_name",
    "capital": "capital",
    "segment": "segment",
    "teamid": "team_id",
    "tags": "tags",
    "tag": "tags",
    "language": "language",
    "assignedto": "assigned_to",
}

COPIED_COLUMNS = (
    "email",
    "alt_number",
    "deemat_account_name",
    "profession",
    "state_name",
    "capital",
    "segment",
    "tags",
    "language",
)


def normalize_header(raw: Any) -> str:
    return str(raw or "").strip().lower().replace(" ", "").replace("_", "")


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    # Spreadsheet phone numbers often arrive as floats.
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _map_row(raw_row: dict[Any, Any]) -> dict[str, str]:
    row: dict[str, str] = {}
    for header, value in raw_row.items():
        column = COLUMN_ALIASES.get(normalize_header(header))
        if column is None or (column in row and row[column]):
            continue
        row[column] = _cell_text(value)
    return row


def _csv_rows(content: bytes) -> Iterator[dict[Any, Any]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise LeadValidationError("file", "CSV file must be UTF-8 encoded") from exc
    yield from csv.DictReader(io.StringIO(text))


def _xlsx_rows(content: bytes) -> Iterator[dict[Any, Any]]:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError) as exc:
        raise LeadValidationError("file", "unable to read Excel file") from exc
    try:
        rows = workbook.active.iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return
        for values in rows:
            if all(_cell_text(value) == "" for value in values):
                continue
            yield dict(zip(header, values))
    finally:
        workbook.close()


def read_rows(filename: str | None, content: bytes) -> list[dict[str, str]]:
    """Parse an uploaded sheet into rows keyed by lead column name."""

    name = (filename or "").lower()
    if name.endswith(".csv"):
        raw_rows = _csv_rows(content)
    elif name.endswith(".xlsx"):
        raw_rows = _xlsx_rows(content)
    else:
        raise LeadValidationError("file", "only .csv and .xlsx files are supported")
    return [_map_row(raw_row) for raw_row in raw_rows]


class LeadImportService:
    def __init__(self) -> None:
        self.repository = LeadRepository()

    def import_leads(
        self,
        session: Session,
        actor_user: ActorUser,
        filename: str | None,
        content: bytes,
    ) -> LeadImportResult:
        ctx = to_auth_context(actor_user)
        with domain_errors():
            require_role(ctx, ADMIN_ROLES, "import leads")
            rows = read_rows(filename, content)

        with lead_span("lead.import", **{"lead.import.rows": len(rows)}) as span:
            result = self._insert_rows(session, rows)
            span.set_attribute("lead.import.inserted", result.valid_inserted)
            span.set_attribute("lead.import.skipped", len(result.skipped))

        observe_import_rows("inserted", result.valid_inserted)
        observe_import_rows("skipped", len(result.skipped))
        logger.info(
            "lead.import.finished",
            extra={
                "user_id": ctx.user_id,
                "count": result.total_parsed,
                "inserted": result.valid_inserted,
                "skipped": len(result.skipped),
            },
        )
        return result

    def _insert_rows(self, session: Session, rows: list[dict[str, str]]) -> LeadImportResult:
        directory = SqlUserDirectory(session)
        assignable = directory.assignable_by_name()
        # Computed once; concurrent imports are caught by the unique constraint.
        existing = self.repository.existing_phones(session)
        seen: set[str] = set()
        skipped: list[ImportSkippedRow] = []
        inserted = 0

        for row_number, row in enumerate(rows, start=2):
            full_name = row.get("full_name", "")
            phone = normalize_phone(row.get("phone"))
            if not full_name or not phone:
                skipped.append(ImportSkippedRow(row=row_number, reason="missing name or phone"))
                continue
            if len(phone) != 10:
                skipped.append(ImportSkippedRow(row=row_number, reason="phone must contain exactly 10 digits"))
                continue
            if phone in existing:
                skipped.append(ImportSkippedRow(row=row_number, reason="phone already exists"))
                continue
            if phone in seen:
                skipped.append(ImportSkippedRow(row=row_number, reason="duplicate phone in file"))
                continue
            seen.add(phone)

            try:
                lead = self._build_lead(directory, assignable, row, full_name, phone)
            except LeadValidationError as exc:
                skipped.append(ImportSkippedRow(row=row_number, reason=exc.reason))
                continue
            try:
                with session.begin_nested():
                    session.add(lead)
            except IntegrityError:
                skipped.append(ImportSkippedRow(row=row_number, reason="phone already exists"))
                continue
            inserted += 1

        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("lead.persist_failed", extra={"operation": "import", "error": str(exc)})
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="failed to import leads",
            ) from exc

        return LeadImportResult(
            message=f"Imported {inserted} of {len(rows)} rows",
            total_parsed=len(rows),
            valid_inserted=inserted,
            skipped=skipped,
        )

    @staticmethod
    def _build_lead(
        directory: SqlUserDirectory,
        assignable: dict[str, DirectoryUser],
        row: dict[str, str],
        full_name: str,
        phone: str,
    ) -> Lead:
        assignee = assignable.get(row.get("assigned_to", "").strip().lower())
        team_id = parse_reference(normalize_reference(row.get("team_id")))
        if team_id is not None and not directory.team_exists(team_id):
            team_id = None
        if team_id is None and assignee is not None:
            team_id = assignee.team_id

        notes = None
        if row.get("notes"):
            notes = encode_status_history(
                [StatusHistoryEntry(status=LeadStatus.NEW.value, note=row["notes"], timestamp=now_timestamp())]
            )

        values = {column: row.get(column) or None for column in COPIED_COLUMNS}
        return Lead(
            id=uuid.uuid4(),
            full_name=full_name,
            phone=phone,
            status=LeadStatus.NEW.value,
            notes=notes,
            team_id=team_id,
            assigned_to=assignee.id if assignee is not None else None,
            assigned_at=utcnow() if assignee is not None else None,
            **values,
        )
