from __future__ import annotations

import math
import threading
import time
import uuid

from fastapi.responses import JSONResponse
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from leaddesk.context import get_correlation_id
from leaddesk.core.auth import bearer_token, decode_access_token
from leaddesk.core.config import get_settings


# Route groups whose writes share one bucket per caller.
LIMITED_GROUPS = frozenset({"leads", "teams"})
WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
WINDOW_SECONDS = 60
ANONYMOUS = "anonymous"


class LeadMutationLimiter:
    """Token buckets keyed by (caller, route group), refilled continuously over one window."""

    def __init__(self, window_seconds: int = WINDOW_SECONDS) -> None:
        self.window_seconds = window_seconds
        self._guard = threading.Lock()
        # key -> (tokens left, monotonic time of last refill)
        self._state: dict[tuple[str, str], tuple[float, float]] = {}

    def acquire(self, caller: str, group: str, per_window: int) -> int | None:
        """Spend one token; return None when allowed, otherwise seconds until one is available."""

        if per_window <= 0:
            return self.window_seconds

        rate = per_window / self.window_seconds
        now = time.monotonic()
        with self._guard:
            tokens, stamp = self._state.get((caller, group), (float(per_window), now))
            tokens = min(float(per_window), tokens + (now - stamp) * rate)
            if tokens < 1.0:
                self._state[(caller, group)] = (tokens, now)
                return max(1, math.ceil((1.0 - tokens) / rate))
            self._state[(caller, group)] = (tokens - 1.0, now)
            return None

    def reset(self) -> None:
        with self._guard:
            self._state = {}


_limiter = LeadMutationLimiter()


def reset_rate_limiter() -> None:
    _limiter.reset()


def route_group(path: str) -> str | None:
    segments = [segment for segment in path.split("/") if segment]
    if len(segments) >= 2 and segments[0] == "api" and segments[1] in LIMITED_GROUPS:
        return segments[1]
    return None


def caller_key(request: Request) -> str:
    token = bearer_token(request)
    if not token:
        return ANONYMOUS
    try:
        subject = decode_access_token(token).get("sub")
    except JWTError:
        return ANONYMOUS
    return ANONYMOUS if subject is None else str(subject)


def _too_many_requests(request: Request, retry_after: int) -> JSONResponse:
    correlation_id = (
        get_correlation_id()
        or getattr(request.state, "correlation_id", None)
        or str(uuid.uuid4())
    )
    return JSONResponse(
        status_code=429,
        content={
            "code": "RATE_LIMITED",
            "message": "Too many requests",
            "details": None,
            "correlation_id": correlation_id,
        },
        headers={"Retry-After": str(retry_after), "X-Correlation-Id": correlation_id},
    )


class LeadMutationRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        group = route_group(request.url.path)
        if settings.rate_limit_disabled or group is None or request.method.upper() not in WRITE_METHODS:
            return await call_next(request)

        retry_after = _limiter.acquire(caller_key(request), group, settings.rate_limit_lead_mutations_per_minute)
        if retry_after is not None:
            return _too_many_requests(request, retry_after)
        return await call_next(request)
