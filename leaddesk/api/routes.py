from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from leaddesk.core.auth import AuthUser, get_current_user
from leaddesk.core.config import get_settings
from leaddesk.core.rbac import require_roles
from leaddesk.leads.api import auth_router, leads_router, teams_router
from leaddesk.metrics import render_metrics

router = APIRouter()
for lead_router in (auth_router, leads_router, teams_router):
    router.include_router(lead_router)

system_router = APIRouter(tags=["system"])


@system_router.get("/health")
def health() -> dict[str, str]:
    settings = get_settings()
    return {"status": "ok", "service": settings.app_name, "environment": settings.app_env}


@system_router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | None]:
    """Echo the token claims the API acts on."""

    return {"sub": user.sub, "role": user.role, "email": user.email}


@system_router.get("/metrics")
def metrics(_: AuthUser = Depends(require_roles("admin", "super_admin"))) -> Response:
    if not get_settings().metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    payload, content_type = render_metrics()
    return Response(content=payload, media_type=content_type)


router.include_router(system_router)
