from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from itcrm.api.errors import app_error_response, error_response
from itcrm.core.auth import get_current_principal
from itcrm.core.config import get_settings
from itcrm.core.errors import AppError
from itcrm.crm.api import (
    activities_router,
    categories_router,
    companies_router,
    contacts_router,
    metrics_router,
    opportunities_router,
    reassign_router,
)
from itcrm.directory.api import auth_router, team_router, users_router
from itcrm.metrics import generate_metrics_payload, metrics_content_type
from itcrm.platform.security.context import Principal
from itcrm.platform.security.permissions import require_permission

router = APIRouter()
router.include_router(auth_router)
router.include_router(users_router)
router.include_router(team_router)
router.include_router(categories_router)
router.include_router(companies_router)
router.include_router(contacts_router)
router.include_router(opportunities_router)
router.include_router(activities_router)
router.include_router(reassign_router)
router.include_router(metrics_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(request: Request, principal: Principal = Depends(get_current_principal)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        return error_response(request, status_code=404, code="not_found", message="Not found")
    try:
        require_permission(principal, "system.metrics.read")
    except AppError as exc:
        return app_error_response(request, exc)
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
