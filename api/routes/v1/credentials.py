"""
api/routes/v1/credentials.py -- Provision backend credentials into the vault (admin only).

Routes:
  POST   /api/v1/credentials                      -- store a new credential; 409 if one exists
  PUT    /api/v1/credentials/{user_id}/{service}  -- replace (or create) a credential
  DELETE /api/v1/credentials/{user_id}/{service}  -- remove a credential; 204 even if absent
  GET    /api/v1/credentials/{user_id}            -- services the user has credentials for

Stored secrets are {"username": ..., "password": ...} records encrypted by
the vault. No route ever returns them. Any write drops the matching cached
backend credential so the next front-door visit logs in with the new secret.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import CredentialCreate, CredentialListResponse, CredentialUpdate
from auth.dependencies import require_admin
from auth.models import User
from bridge.base import DownstreamAuthBridge
from core.errors import CredentialAlreadyExists, UnknownService
from vault.store import CredentialVault

logger = logging.getLogger("homegate.api.credentials")

router = APIRouter()


@router.post("/credentials", response_model=CredentialListResponse, status_code=201)
def add_credential(
    request: Request,
    body: CredentialCreate,
    current_user: User = Depends(require_admin),
) -> CredentialListResponse:
    bridge = _bridge_or_404(request, body.service)
    _owner_or_404(request, body.user_id)
    vault: CredentialVault = request.app.state.vault

    if vault.exists(body.user_id, body.service):
        raise CredentialAlreadyExists(body.service)

    vault.set(body.user_id, body.service, {"username": body.username, "password": body.password})
    bridge.invalidate(body.user_id)
    logger.info("Admin %s stored a %s credential for user %s", current_user.username, body.service, body.user_id)
    return CredentialListResponse(user_id=body.user_id, services=vault.list_services(body.user_id))


@router.put("/credentials/{user_id}/{service}", response_model=CredentialListResponse)
def replace_credential(
    request: Request,
    user_id: str,
    service: str,
    body: CredentialUpdate,
    current_user: User = Depends(require_admin),
) -> CredentialListResponse:
    bridge = _bridge_or_404(request, service)
    _owner_or_404(request, user_id)
    vault: CredentialVault = request.app.state.vault

    vault.set(user_id, service, {"username": body.username, "password": body.password})
    bridge.invalidate(user_id)
    logger.info("Admin %s replaced the %s credential for user %s", current_user.username, service, user_id)
    return CredentialListResponse(user_id=user_id, services=vault.list_services(user_id))


@router.delete("/credentials/{user_id}/{service}", status_code=204)
def delete_credential(
    request: Request,
    user_id: str,
    service: str,
    current_user: User = Depends(require_admin),
) -> Response:
    vault: CredentialVault = request.app.state.vault
    vault.delete(user_id, service)
    bridge = request.app.state.bridges.get(service)
    if bridge is not None:
        bridge.invalidate(user_id)
    logger.info("Admin %s deleted the %s credential for user %s", current_user.username, service, user_id)
    return Response(status_code=204)


@router.get("/credentials/{user_id}", response_model=CredentialListResponse)
def list_credentials(
    request: Request,
    user_id: str,
    current_user: User = Depends(require_admin),
) -> CredentialListResponse:
    vault: CredentialVault = request.app.state.vault
    return CredentialListResponse(user_id=user_id, services=vault.list_services(user_id))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _bridge_or_404(request: Request, service: str) -> DownstreamAuthBridge:
    bridge = request.app.state.bridges.get(service)
    if bridge is None:
        raise UnknownService(service)
    return bridge


def _owner_or_404(request: Request, user_id: str) -> None:
    if request.app.state.user_store.get_by_id(user_id) is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
