from __future__ import annotations

from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


@dataclass
class RequestContext:
    """Per-request facts shared by the auth dependency and the request log line."""

    correlation_id: str
    user_id: str | None = None
    role: str | None = None


def request_context(request: Request) -> RequestContext:
    context = getattr(request.state, "context", None)
    if context is None:
        context = RequestContext(correlation_id=getattr(request.state, "correlation_id", None) or "")
        request.state.context = context
    return context


def bind_actor(request: Request, user_id: str, role: str) -> None:
    context = request_context(request)
    context.user_id = user_id
    context.role = role


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        context = request_context(request)
        response = await call_next(request)
        # Older clients read the request id header.
        response.headers["x-request-id"] = context.correlation_id
        return response
