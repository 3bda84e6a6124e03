"""
api/routes/v1/support.py -- Helpers for the portal page.

Routes:
  GET /api/v1/support/services        -- up/down for every configured service
  GET /api/v1/support/service-access  -- services the caller may open
  GET /api/v1/support/is-admin        -- whether the caller is an admin

All three require a gateway session. Status checks hit each service's public
URL, the same address the browser is redirected to.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import IsAdminResponse, ServiceAccessResponse, ServiceStatusResponse
from auth.access import require_service_access
from auth.dependencies import get_identity
from core.models import Identity
from core.status import check_services

router = APIRouter()


@router.get("/support/services", response_model=ServiceStatusResponse)
def service_status(
    request: Request,
    identity: Identity = Depends(get_identity),
) -> ServiceStatusResponse:
    urls = {name: config.public_url for name, config in request.app.state.services.items()}
    return ServiceStatusResponse(services=check_services(urls, session=request.app.state.http))


@router.get("/support/service-access", response_model=ServiceAccessResponse)
def service_access(
    request: Request,
    identity: Identity = Depends(get_identity),
) -> ServiceAccessResponse:
    """Configured services the caller would be let through to, sorted by name."""
    allowed = [name for name in sorted(request.app.state.services) if require_service_access(identity, name)]
    return ServiceAccessResponse(services=allowed)


@router.get("/support/is-admin", response_model=IsAdminResponse)
def is_admin(identity: Identity = Depends(get_identity)) -> IsAdminResponse:
    return IsAdminResponse(is_admin=identity.is_admin)
