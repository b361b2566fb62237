from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from enum import StrEnum
from typing import Any

from leaddesk.leads.history import CLIENT_STATUSES


LeadPredicate = Callable[[Any], bool]


class StageView(StrEnum):
    ALL = "all"
    PIPELINE = "pipeline"
    CLIENTS = "clients"


def split_tags(raw: str | None) -> set[str]:
    return {tag.strip().lower() for tag in (raw or "").split(",") if tag.strip()}


def by_status(status: str) -> LeadPredicate:
    return lambda lead: lead.status == status


def by_assignment(assignment: str) -> LeadPredicate:
    value = assignment.strip().lower()
    if value == "assigned":
        return lambda lead: lead.assigned_to is not None
    if value == "unassigned":
        return lambda lead: lead.assigned_to is None
    return lambda lead: lead.assigned_to is not None and str(lead.assigned_to).lower() == value


def by_tag(tag: str) -> LeadPredicate:
    wanted = tag.strip().lower()
    return lambda lead: wanted in split_tags(lead.tags)


def by_name(fragment: str) -> LeadPredicate:
    needle = fragment.strip().lower()
    return lambda lead: needle in (lead.full_name or "").lower()


def created_between(created_from: date | None, created_to: date | None) -> LeadPredicate:
    def predicate(lead: Any) -> bool:
        if lead.created_at is None:
            return False
        created_on = lead.created_at.date()
        if created_from is not None and created_on < created_from:
            return False
        if created_to is not None and created_on > created_to:
            return False
        return True

    return predicate


def by_stage(stage: StageView) -> LeadPredicate:
    if stage == StageView.PIPELINE:
        return lambda lead: lead.status not in CLIENT_STATUSES
    if stage == StageView.CLIENTS:
        return lambda lead: lead.status in CLIENT_STATUSES
    return lambda lead: True


@dataclass(frozen=True, slots=True)
class LeadFilter:
    """Optional refinements over the visible leads; every supplied filter must match."""

    status: str | None = None
    assignment: str | None = None
    tag: str | None = None
    name: str | None = None
    created_from: date | None = None
    created_to: date | None = None
    stage: StageView = StageView.ALL

    def predicates(self) -> list[LeadPredicate]:
        predicates = [by_stage(self.stage)]
        if self.status:
            predicates.append(by_status(self.status))
        if self.assignment and self.assignment.strip():
            predicates.append(by_assignment(self.assignment))
        if self.tag and self.tag.strip():
            predicates.append(by_tag(self.tag))
        if self.name and self.name.strip():
            predicates.append(by_name(self.name))
        if self.created_from is not None or self.created_to is not None:
            predicates.append(created_between(self.created_from, self.created_to))
        return predicates

    def apply(self, leads: Iterable[Any]) -> list[Any]:
        predicates = self.predicates()
        return [lead for lead in leads if all(predicate(lead) for predicate in predicates)]
