"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The gateway session (Starlette SessionMiddleware) is the only auth method: the
login route stores the user id and a registered session token in it, and these
helpers resolve them to a live User and its Identity on every request.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises AuthenticationRequired (401).
require_admin() additionally applies the require_admin decision and raises
OnlyForAdmin (403) on denial.

Errors raised here are core.errors.GatewayError subclasses; api/main.py turns
them into the JSON error envelope.

Layer rule: no imports from gateway/ or api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.access import require_admin as decide_admin
from auth.models import User
from auth.session import SessionContext
from core.errors import AuthenticationRequired
from core.models import Identity


def get_session_context(request: Request) -> SessionContext:
    return SessionContext(request.session)


def try_get_current_user(request: Request) -> User | None:
    """Return the active User bound to the session, or None.

    The session token must still be registered to the same user id. A session
    that was revoked, or that points at a deleted or deactivated account,
    counts as unauthenticated.
    """
    context = get_session_context(request)
    user_id = context.current_user_id()
    token = context.current_token()
    if user_id is None or token is None:
        return None
    user_store = request.app.state.user_store
    owner = user_store.session_owner(token)
    if owner is None or str(owner) != user_id:
        return None
    user = user_store.get_by_id(user_id)
    if user is None or not user.is_active:
        return None
    return user


def get_current_user(request: Request) -> User:
    """Require a valid session. Raises AuthenticationRequired otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise AuthenticationRequired()
    return user


def get_identity(request: Request) -> Identity:
    """Require a valid session and return the caller's Identity."""
    return get_current_user(request).to_identity()


def require_admin(request: Request) -> User:
    """Require an admin session. 401 if unauthenticated, 403 if not admin."""
    user = get_current_user(request)
    decision = decide_admin(user.to_identity())
    if not decision.allowed:
        raise decision.to_error()
    return user
