from __future__ import annotations


class LeadError(Exception):
    """Base class for lead domain failures."""


class LeadValidationError(LeadError):
    """Input that cannot be stored; carries the offending field and reason."""

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")

    def as_details(self) -> dict[str, str]:
        return {"field": self.field, "reason": self.reason}


class DuplicatePhoneError(LeadValidationError):
    def __init__(self, phone: str) -> None:
        super().__init__("phone", f"a lead with phone {phone} already exists")
        self.phone = phone


class HistoryEncodingError(LeadValidationError):
    """A history field value collides with the storage delimiters."""


class ReferenceNotFoundError(LeadError):
    def __init__(self, entity: str, entity_id: object) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")
