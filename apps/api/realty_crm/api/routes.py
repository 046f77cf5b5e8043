from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from realty_crm.api.deps import get_current_principal
from realty_crm.core.config import get_settings
from realty_crm.listings.api import router as listings_router
from realty_crm.metrics import generate_metrics_payload, metrics_content_type
from realty_crm.platform.security.api import router as scope_router
from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.roles import Role
from realty_crm.teams.api import router as teams_router
from realty_crm.users.api import router as users_router
from realty_crm.viewings.api import router as viewings_router


router = APIRouter()
router.include_router(users_router)
router.include_router(teams_router)
router.include_router(listings_router)
router.include_router(viewings_router)
router.include_router(scope_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
def me(principal: Principal = Depends(get_current_principal)) -> dict[str, int | str]:
    return {
        "id": principal.user_id,
        "role": principal.role.value,
    }


@router.get("/metrics", tags=["system"])
def metrics(principal: Principal = Depends(get_current_principal)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if principal.role != Role.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Metrics are restricted to admin")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
