from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class AuthContext:
    """Caller identity used by row visibility and field masking."""

    user_id: str
    role: str
    team_id: str | None = None
    correlation_id: str | None = None
