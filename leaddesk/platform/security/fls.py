from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from leaddesk.core.config import get_settings
from leaddesk.metrics import observe_masked_fields
from leaddesk.platform.security.context import AuthContext
from leaddesk.platform.security.policies import FieldDecision, get_policy_backend


PHONE_VISIBLE_PREFIX = 2


def mask_phone(value: str | None) -> str | None:
    """Keep the first two digits of a phone number and hide the rest."""

    if not value:
        return value
    return value[:PHONE_VISIBLE_PREFIX] + get_settings().phone_mask_suffix


def apply_fls_read(resource: str, record: dict[str, Any], ctx: AuthContext) -> dict[str, Any]:
    """Apply field-level read policy to a single record."""

    policy = get_policy_backend()
    output: dict[str, Any] = {}
    masked_fields: list[str] = []

    for field_name, value in record.items():
        decision = policy.evaluate_field_read(resource, field_name, ctx)
        if decision == FieldDecision.ALLOW:
            output[field_name] = value
        elif decision == FieldDecision.MASK:
            # Only phone numbers are configured for masking.
            output[field_name] = mask_phone(None if value is None else str(value))
            masked_fields.append(field_name)

    if masked_fields:
        observe_masked_fields(masked_fields)
    return output


def apply_fls_read_many(resource: str, records: Iterable[dict[str, Any]], ctx: AuthContext) -> list[dict[str, Any]]:
    return [apply_fls_read(resource, record, ctx) for record in records]
