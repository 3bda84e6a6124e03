"""
api/routes/v1/users.py -- Gateway account management (admin only).

Routes:
  POST   /api/v1/users         -- create an account
  GET    /api/v1/users         -- list accounts
  GET    /api/v1/users/{id}    -- one account
  PATCH  /api/v1/users/{id}    -- change role, active flag, email, password or allowed services
  DELETE /api/v1/users/{id}    -- delete an account and everything stored for it
  DELETE /api/v1/users/{id}/sessions -- sign an account out everywhere

PATCH and DELETE block self-lockout and removing the last active admin.
Deleting an account also removes its stored backend credentials and any
cached backend credentials, so nothing keyed by the old id survives.
Deactivating or deleting an account ends all of its sessions (UserStore does
this itself).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import SessionRevokeResponse, UserCreate, UserPatch, UserResponse
from auth.dependencies import require_admin
from auth.models import User
from auth.passwords import hash_password
from auth.store import UserStore
from core.models import ROLE_ADMIN

logger = logging.getLogger("homegate.api.users")

router = APIRouter()


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Create a gateway account. Admin only."""
    user_store: UserStore = request.app.state.user_store
    new_user = User(
        username=body.username,
        role=body.role.value,
        hashed_password=hash_password(body.password),
        email=body.email,
        allowed_services=body.allowed_services,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that username already exists."},
        ) from exc

    logger.info("Admin %s created user %s", current_user.username, body.username)
    return _user_to_response(user_store.get_by_id(user_id))


@router.get("/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    current_user: User = Depends(require_admin),
) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [_user_to_response(u) for u in user_store.list_users()]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    return _user_to_response(_get_or_404(request.app.state.user_store, user_id))


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Update an account. Admin only.

    Prevents:
      - Self-deactivation and self-demotion (admin locking themselves out).
      - Deactivating or demoting the last active admin.
    """
    user_store: UserStore = request.app.state.user_store
    target = _get_or_404(user_store, user_id)

    updates: dict = {}
    losing_admin = target.role == ROLE_ADMIN and (
        body.is_active is False or (body.role is not None and body.role.value != ROLE_ADMIN)
    )
    if losing_admin:
        if target.id == current_user.id:
            raise HTTPException(
                status_code=400,
                detail={"code": "self_lockout", "message": "You cannot deactivate or demote your own account."},
            )
        if user_store.count_active_admins() <= 1:
            raise HTTPException(
                status_code=400,
                detail={"code": "last_admin", "message": "Cannot remove the last active admin account."},
            )

    if body.role is not None:
        updates["role"] = body.role.value
    if body.is_active is not None:
        updates["is_active"] = body.is_active
    if body.email is not None:
        updates["email"] = body.email
    if body.password is not None:
        updates["hashed_password"] = hash_password(body.password)
    if body.allowed_services is not None:
        updates["allowed_services"] = body.allowed_services

    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )

    user_store.update_user(user_id, **updates)
    logger.info("Admin %s updated user %s (%s)", current_user.username, target.username, ", ".join(sorted(updates)))
    return _user_to_response(user_store.get_by_id(user_id))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
) -> Response:
    """Delete an account with its stored and cached backend credentials. Admin only."""
    user_store: UserStore = request.app.state.user_store
    target = _get_or_404(user_store, user_id)

    if target.id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_lockout", "message": "You cannot delete your own account."},
        )
    if target.role == ROLE_ADMIN and target.is_active and user_store.count_active_admins() <= 1:
        raise HTTPException(
            status_code=400,
            detail={"code": "last_admin", "message": "Cannot remove the last active admin account."},
        )

    owner = str(target.id)
    removed = request.app.state.vault.delete_all_for_owner(owner)
    for bridge in request.app.state.bridges.values():
        bridge.invalidate(owner)
    user_store.delete_user(user_id)
    logger.info("Admin %s deleted user %s (%d stored credentials)", current_user.username, target.username, removed)
    return Response(status_code=204)


@router.delete("/users/{user_id}/sessions", response_model=SessionRevokeResponse)
def revoke_user_sessions(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
) -> SessionRevokeResponse:
    """End every session of an account. Admin only."""
    user_store: UserStore = request.app.state.user_store
    target = _get_or_404(user_store, user_id)
    revoked = user_store.delete_sessions_for_user(target.id)
    logger.info("Admin %s revoked %d sessions of %s", current_user.username, revoked, target.username)
    return SessionRevokeResponse(revoked=revoked)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_or_404(user_store: UserStore, user_id: int) -> User:
    user = user_store.get_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    return user


def _user_to_response(user: User | None) -> UserResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return UserResponse(
        id=user.id,
        username=user.username,
        role=user.role,
        email=user.email,
        allowed_services=user.allowed_services or [],
        is_active=user.is_active,
        created_at=user.created_at or "",
        last_login=user.last_login,
    )
