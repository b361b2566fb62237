"""Codec for the two append-only history logs stored on a lead.

Status history is stored as ``status__note__timestamp`` entries joined by
``||``; payment history as seven ``__``-joined fields per entry, entries
joined by ``|||``. Both are stored oldest first. The ``*_for_display``
helpers convert from and to the newest-first order shown to users.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import StrEnum

from leaddesk.leads.errors import HistoryEncodingError, LeadValidationError


STATUS_ENTRY_SEPARATOR = "||"
PAYMENT_ENTRY_SEPARATOR = "|||"
FIELD_SEPARATOR = "__"
APPROVED_FLAG_TRUE = "1"
APPROVED_FLAG_FALSE = "0"
PAYMENT_FIELD_COUNT = 7


class LeadStatus(StrEnum):
    FREE_TRIAL = "Free Trial"
    FREE_TRIAL_FOLLOW_UP = "Free Trial – Follow Up"
    FOLLOW_UP_NO_RESPONSE = "Follow Up (No Response)"
    PROMISE_TO_PAY = "Promise To Pay"
    PAID_CLIENT = "Paid Client"
    FOLLOW_UP = "Follow Up"
    CALL_BACK_WITH_PRESENTATION = "Call Back With Presentation"
    CALL_BACK_WITHOUT_PRESENTATION = "Call Back Without Presentation"
    NOT_INTERESTED = "Not Interested"
    NON_TRADER = "Non Trader"
    LESS_FUNDS = "Less Funds"
    LANGUAGE_BARRIER = "Language Barrier"
    DISCONNECTED_CALL = "Disconnected Call"
    SWITCHED_OFF = "Switched Off"
    RINGING = "Ringing"
    NOT_REACHABLE = "Not Reachable"
    OUT_OF_SERVICE = "Out Of Service"
    BUSY = "Busy"
    INCOMING_CALLS_NOT_ALLOWED = "Incoming Calls Not Allowed"
    INVALID_NUMBER = "Invalid Number"
    LOSS_CLIENT = "Loss Client"
    WON = "Won"
    NEW = "New"


KNOWN_STATUSES = frozenset(item.value for item in LeadStatus)
CLIENT_STATUSES = frozenset({LeadStatus.WON.value, LeadStatus.PAID_CLIENT.value})
PACKAGE_TIERS = ("", "Basic", "Advanced", "Premium")

_AMOUNT_RE = re.compile(r"^(\d+(\.\d*)?|\.\d+)$")


def now_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class StatusHistoryEntry:
    status: str
    note: str
    timestamp: str


@dataclass(frozen=True, slots=True)
class PaymentEntry:
    amount: str
    date: str
    utr: str = ""
    approved: bool = False
    assigned_to: str = ""
    assigned_to_name: str = ""
    package_tier: str = ""


@dataclass(frozen=True, slots=True)
class SubmittedPayment:
    """A payment row as edited by a user; ``is_new`` marks rows added in this edit."""

    amount: str
    date: str = ""
    utr: str = ""
    assigned_to: str = ""
    assigned_to_name: str = ""
    package_tier: str = ""
    is_new: bool = False


def _check_field(name: str, value: str) -> str:
    if "|" in value or FIELD_SEPARATOR in value:
        raise HistoryEncodingError(name, "must not contain '|' or '__'")
    if value.startswith("_") or value.endswith("_"):
        raise HistoryEncodingError(name, "must not start or end with '_'")
    return value


def _split_entries(raw: str | None, separator: str) -> list[str]:
    if not raw:
        return []
    return [chunk for chunk in raw.split(separator) if chunk.strip()]


# Status history


def encode_status_history(entries: Iterable[StatusHistoryEntry]) -> str:
    """Encode oldest-first entries; entries with neither status nor note are dropped."""

    encoded: list[str] = []
    for entry in entries:
        if not entry.status and not entry.note:
            continue
        if entry.status and entry.status not in KNOWN_STATUSES:
            raise HistoryEncodingError("status", f"unknown status '{entry.status}'")
        if not entry.status and entry.note in KNOWN_STATUSES:
            # Would decode as the legacy note/status order.
            raise HistoryEncodingError("note", "a note without a status cannot be a status name")
        encoded.append(
            FIELD_SEPARATOR.join(
                (
                    _check_field("status", entry.status),
                    _check_field("note", entry.note),
                    _check_field("timestamp", entry.timestamp),
                )
            )
        )
    return STATUS_ENTRY_SEPARATOR.join(encoded)


def _is_current_order(parts: Sequence[str]) -> bool:
    if parts[0] in KNOWN_STATUSES:
        return True
    return parts[0] == "" and parts[1] not in KNOWN_STATUSES


def decode_status_history(raw: str | None, *, now: Callable[[], str] = now_timestamp) -> list[StatusHistoryEntry]:
    """Decode to oldest-first entries. Malformed entries are recovered, never raised."""

    entries: list[StatusHistoryEntry] = []
    for chunk in _split_entries(raw, STATUS_ENTRY_SEPARATOR):
        parts = chunk.split(FIELD_SEPARATOR)
        if len(parts) < 3:
            entries.append(StatusHistoryEntry(status=LeadStatus.NEW.value, note=parts[0], timestamp=now()))
            continue
        if _is_current_order(parts):
            status, note = parts[0], FIELD_SEPARATOR.join(parts[1:-1])
        else:
            note, status = FIELD_SEPARATOR.join(parts[:-2]), parts[-2]
        entries.append(StatusHistoryEntry(status=status, note=note, timestamp=parts[-1]))
    return entries


def decode_status_history_for_display(raw: str | None) -> list[StatusHistoryEntry]:
    return list(reversed(decode_status_history(raw)))


def encode_status_history_from_display(entries: Sequence[StatusHistoryEntry]) -> str:
    return encode_status_history(reversed(entries))


def append_status_entry(raw: str | None, status: str, note: str, *, timestamp: str | None = None) -> str:
    entries = decode_status_history(raw)
    entries.append(StatusHistoryEntry(status=status, note=note, timestamp=timestamp or now_timestamp()))
    return encode_status_history(entries)


def extend_status_history(
    stored: Sequence[StatusHistoryEntry],
    submitted_newest_first: Sequence[StatusHistoryEntry],
) -> list[StatusHistoryEntry]:
    """Accept only entries added on top of the stored log; returns oldest first.

    The oldest submitted entries must repeat the stored ones by status and
    note. Stored timestamps are kept as they were.
    """

    oldest_first = list(reversed(submitted_newest_first))
    echoed = oldest_first[: len(stored)]
    if len(echoed) < len(stored) or any(
        (item.status, item.note) != (previous.status, previous.note) for previous, item in zip(stored, echoed)
    ):
        raise LeadValidationError("statusHistory", "saved status history entries cannot be changed")
    return list(stored) + oldest_first[len(stored):]


# Payment history


def validate_amount(raw: str | None) -> str:
    value = (raw or "").strip()
    if not value:
        raise LeadValidationError("amount", "amount is required")
    if not _AMOUNT_RE.match(value):
        raise LeadValidationError("amount", "amount must be a non-negative decimal with at most one decimal point")
    return value


def validate_package_tier(raw: str | None) -> str:
    value = (raw or "").strip()
    if value not in PACKAGE_TIERS:
        raise LeadValidationError("packageTier", f"package tier must be one of {', '.join(t for t in PACKAGE_TIERS if t)}")
    return value


def encode_payment_history(entries: Iterable[PaymentEntry]) -> str:
    encoded: list[str] = []
    for entry in entries:
        encoded.append(
            FIELD_SEPARATOR.join(
                (
                    _check_field("amount", entry.amount),
                    _check_field("date", entry.date),
                    _check_field("utr", entry.utr),
                    APPROVED_FLAG_TRUE if entry.approved else APPROVED_FLAG_FALSE,
                    _check_field("assigned_to", entry.assigned_to),
                    _check_field("assigned_to_name", entry.assigned_to_name),
                    _check_field("packageTier", entry.package_tier),
                )
            )
        )
    return PAYMENT_ENTRY_SEPARATOR.join(encoded)


def _approved_flag(parts: Sequence[str]) -> bool:
    # Rows written before the flag existed count as approved.
    if len(parts) < 4 or parts[3] == "":
        return True
    return parts[3] in {"1", "true"}


def decode_payment_history(raw: str | None, *, now: Callable[[], str] = now_timestamp) -> list[PaymentEntry]:
    entries: list[PaymentEntry] = []
    for chunk in _split_entries(raw, PAYMENT_ENTRY_SEPARATOR):
        parts = chunk.split(FIELD_SEPARATOR)
        padded = parts + [""] * (PAYMENT_FIELD_COUNT - len(parts))
        entries.append(
            PaymentEntry(
                amount=padded[0],
                date=padded[1] or now(),
                utr=padded[2],
                approved=_approved_flag(parts),
                assigned_to=padded[4],
                assigned_to_name=padded[5],
                package_tier=padded[6],
            )
        )
    return entries


def decode_payment_history_for_display(raw: str | None) -> list[PaymentEntry]:
    return list(reversed(decode_payment_history(raw)))


def merge_payment_history(
    stored: Sequence[PaymentEntry],
    submitted_newest_first: Sequence[SubmittedPayment],
    *,
    can_approve: bool,
    credited_to: str = "",
    credited_name: str = "",
) -> list[PaymentEntry]:
    """Merge an edited payment list into the stored one, oldest first.

    The log is append-only. Rows not flagged new are matched to stored rows
    oldest first and must all come back, in order; any such row past the
    stored length counts as new. Stored rows keep their amount, date, credited
    RM and tier; only an approver may set their UTR, which approves them.
    New rows are never stored approved, and new rows with a blank amount are
    dropped.
    """

    oldest_first = list(reversed(submitted_newest_first))
    echoed = [item for item in oldest_first if not item.is_new]
    if len(echoed) < len(stored):
        raise LeadValidationError("paymentHistory", "saved payments cannot be removed")

    merged: list[PaymentEntry] = []
    for previous, item in zip(stored, echoed):
        if item.date and previous.date and item.date != previous.date:
            raise LeadValidationError("paymentHistory", "saved payments cannot be reordered")
        utr = item.utr.strip() if can_approve else ""
        if not utr:
            merged.append(previous)
            continue
        merged.append(replace(previous, utr=utr, approved=True))

    added: list[PaymentEntry] = []
    fresh = [item for item in oldest_first if item.is_new] + echoed[len(stored):]
    for item in fresh:
        if not item.amount.strip():
            continue
        added.append(
            PaymentEntry(
                amount=validate_amount(item.amount),
                date=item.date or now_timestamp(),
                utr=item.utr.strip(),
                approved=False,
                assigned_to=item.assigned_to or credited_to,
                assigned_to_name=item.assigned_to_name or credited_name,
                package_tier=validate_package_tier(item.package_tier),
            )
        )
    return merged + added


def approve_payment(entries: Sequence[PaymentEntry], display_index: int, utr: str) -> list[PaymentEntry]:
    """Approve the entry at a newest-first index with a UTR reference."""

    reference = utr.strip()
    if not reference:
        raise LeadValidationError("utr", "a UTR is required to approve a payment")
    position = len(entries) - 1 - display_index
    if display_index < 0 or position < 0:
        raise LeadValidationError("index", "no payment at that position")
    updated = list(entries)
    updated[position] = replace(updated[position], utr=_check_field("utr", reference), approved=True)
    return updated


# Sales totals


def _to_decimal(amount: str) -> Decimal:
    try:
        return Decimal(amount)
    except (InvalidOperation, ValueError):
        return Decimal("0")


@dataclass
class SalesSummary:
    total_sales: Decimal = Decimal("0")
    paid_clients: int = 0
    by_relationship_manager: dict[str, Decimal] = field(default_factory=dict)


def summarize_sales(leads: Iterable[tuple[str, str | None]]) -> SalesSummary:
    """Sum approved payments on client-stage leads, given ``(status, payment_history)`` pairs."""

    summary = SalesSummary()
    for status, payment_history in leads:
        if status not in CLIENT_STATUSES:
            continue
        summary.paid_clients += 1
        for entry in decode_payment_history(payment_history):
            if not entry.approved:
                continue
            amount = _to_decimal(entry.amount)
            summary.total_sales += amount
            if entry.assigned_to:
                current = summary.by_relationship_manager.get(entry.assigned_to, Decimal("0"))
                summary.by_relationship_manager[entry.assigned_to] = current + amount
    return summary
