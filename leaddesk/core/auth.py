from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request
from werkzeug.security import check_password_hash, generate_password_hash

from leaddesk.core.config import get_settings


PASSWORD_HASH_METHOD = "pbkdf2:sha256"


@dataclass
class AuthUser:
    sub: str
    role: str
    email: str | None = None


def hash_password(password: str) -> str:
    return generate_password_hash(password, method=PASSWORD_HASH_METHOD, salt_length=16)


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return check_password_hash(password_hash, password)
    except ValueError:
        # Hash written with a method this werkzeug build does not know.
        return False


def create_access_token(*, user_id: str, email: str, role: str, now: datetime | None = None) -> str:
    settings = get_settings()
    issued_at = now or datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": user_id,
        "email": email,
        "role": role,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + timedelta(minutes=settings.jwt_expires_minutes)).timestamp()),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
    )


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""


async def get_current_user(request: Request) -> AuthUser:
    token = bearer_token(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")

    try:
        payload = decode_access_token(token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid or expired token")

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid or expired token")

    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = str(subject)
    email = payload.get("email")
    return AuthUser(
        sub=str(subject),
        role=str(payload.get("role", "")).lower(),
        email=str(email) if email else None,
    )
