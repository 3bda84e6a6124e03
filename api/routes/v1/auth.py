"""
api/routes/v1/auth.py -- Gateway session endpoints.

Routes:
  POST /api/v1/auth/login              -- password login; starts the gateway session
  POST /api/v1/auth/logout             -- ends the gateway session; 200
  GET  /api/v1/auth/me                 -- current user info (requires auth)
  POST /api/v1/auth/logout/{service}   -- drop the cached backend credential and
                                          the service's marker cookie (requires auth)
  GET  /api/v1/auth/sessions           -- the caller's live logins (requires auth)
  DELETE /api/v1/auth/sessions         -- log out everywhere (requires auth)

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on login responses.
  Login replaces whatever the session held before (session fixation).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    ServiceLogoutResponse,
    SessionResponse,
    SessionRevokeResponse,
)
from auth.cookies import clear_marker_cookie
from auth.dependencies import get_current_user, get_identity
from auth.models import User
from auth.passwords import authenticate_user
from auth.session import SessionContext, end_session, start_session
from auth.store import UserStore, session_digest
from core.errors import UnknownService
from core.models import Identity

logger = logging.getLogger("homegate.auth")

# Auth policy:
# - POST /api/v1/auth/login:             public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:            public -- clearing a session needs no prior auth
# - GET  /api/v1/auth/me:                requires auth (get_current_user)
# - POST /api/v1/auth/logout/{service}:  requires auth (get_identity)
# - GET/DELETE /api/v1/auth/sessions:   requires auth (get_current_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # must stay ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; start the gateway session.

    Returns the same generic error for wrong username and wrong password
    ("bad_credentials") to avoid leaking username existence information.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.username, body.password)
    if user is None:
        logger.info("Failed login for %s", body.username)
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    previous = SessionContext(request.session).current_token()
    if previous is not None:
        user_store.delete_session(previous)
    token = user_store.create_session(
        user.id,
        user_agent=request.headers.get("user-agent"),
        ip=request.client.host if request.client else None,
    )
    start_session(request.session, user.id, token)
    user_store.update_last_login(user.id)
    logger.info("User %s logged in", user.username)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(user_id=str(user.id), username=user.username, role=user.role).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
def logout(request: Request) -> JSONResponse:
    """End the gateway session and revoke its token. Cached backend credentials are left in place."""
    token = SessionContext(request.session).current_token()
    if token is not None:
        request.app.state.user_store.delete_session(token)
    end_session(request.session)
    return JSONResponse(content={"message": "Logged out."})


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        user_id=str(current_user.id),
        username=current_user.username,
        role=current_user.role,
        email=current_user.email,
        allowed_services=current_user.allowed_services or [],
    )


@router.post("/auth/logout/{service}", response_model=ServiceLogoutResponse)
def logout_service(
    request: Request,
    service: str,
    identity: Identity = Depends(get_identity),
) -> JSONResponse:
    """Forget the caller's cached credential for one service.

    The next visit to the service's front door logs in to the backend again.
    The gateway session itself stays valid.
    """
    bridge = request.app.state.bridges.get(service)
    if bridge is None:
        raise UnknownService(service)
    invalidated = bridge.invalidate(identity.user_id)
    logger.info("User %s logged out of %s (cached=%s)", identity.user_id, service, invalidated)
    resp = JSONResponse(content=ServiceLogoutResponse(service=service, invalidated=invalidated).model_dump())
    clear_marker_cookie(resp, bridge.service, request.app.state.settings.cookie_domain)
    return resp


@router.get("/auth/sessions", response_model=list[SessionResponse])
def list_sessions(request: Request, current_user: User = Depends(get_current_user)) -> list[SessionResponse]:
    """Every live login of the caller, newest first. The current one is flagged."""
    token = SessionContext(request.session).current_token()
    current = session_digest(token) if token else None
    user_store: UserStore = request.app.state.user_store
    return [
        SessionResponse(id=s.id, created_at=s.created_at, user_agent=s.user_agent, ip=s.ip, current=s.id == current)
        for s in user_store.list_sessions(current_user.id)
    ]


@router.delete("/auth/sessions", response_model=SessionRevokeResponse)
def revoke_sessions(request: Request, current_user: User = Depends(get_current_user)) -> SessionRevokeResponse:
    """Log out everywhere, this browser included."""
    revoked = request.app.state.user_store.delete_sessions_for_user(current_user.id)
    end_session(request.session)
    logger.info("User %s revoked %d sessions", current_user.username, revoked)
    return SessionRevokeResponse(revoked=revoked)
