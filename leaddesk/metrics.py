from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

lead_assignments_total = Counter(
    "lead_assignments_total",
    "Lead assignment resolutions by operation and outcome",
    ["operation", "outcome"],
)

lead_masked_fields_total = Counter(
    "lead_masked_fields_total",
    "Lead fields masked on read",
    ["field"],
)

lead_import_rows_total = Counter(
    "lead_import_rows_total",
    "Bulk import rows by outcome",
    ["outcome"],
)


# Fallback for unmatched routes: numeric and uuid segments become {id}.
_ID_SEGMENT_RE = re.compile(r"/(?:\d+|[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})(?=/|$)")
_TEMPLATE_PARAM_RE = re.compile(r"\{[^{}]+\}")


def resolve_http_path_label(request: Request) -> str:
    """Label a request by its route template, e.g. `/api/leads/{id}`."""

    route = request.scope.get("route")
    template = getattr(route, "path_format", None) or getattr(route, "path", None)
    if isinstance(template, str) and template:
        return _TEMPLATE_PARAM_RE.sub("{id}", template)
    return _ID_SEGMENT_RE.sub("/{id}", request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_lead_assignment(operation: str, outcome: str) -> None:
    lead_assignments_total.labels(operation=operation, outcome=outcome).inc()


def observe_masked_fields(fields: list[str]) -> None:
    for field_name in fields:
        lead_masked_fields_total.labels(field=field_name).inc()


def observe_import_rows(outcome: str, count: int = 1) -> None:
    if count > 0:
        lead_import_rows_total.labels(outcome=outcome).inc(count)


def render_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
