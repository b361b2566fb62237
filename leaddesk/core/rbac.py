from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from leaddesk.core.auth import AuthUser, get_current_user


def require_roles(*roles: str) -> Callable[[AuthUser], AuthUser]:
    allowed = {role.lower() for role in roles}

    async def checker(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{user.role}' is not allowed; requires one of: {', '.join(sorted(allowed))}",
            )
        return user

    return checker
