"""
auth/cookies.py -- Cookies the gateway writes to the browser besides its session.

Marker cookie "{service}_auth=true":
    httpOnly, Secure, SameSite=None, Domain=<parent domain>, Path=/, Max-Age=24h.
    Non-sensitive; it only records that this browser was already bridged to
    the service so the bridge is not re-run on every request.

Forwarded backend cookie (cookie-kind services):
    the backend's own session cookie, host-only (no Domain attribute),
    httpOnly, Secure, SameSite=Lax to match the backend's default, Path=/,
    Max-Age=24h.
"""

from __future__ import annotations

from starlette.responses import Response

from core.models import CookieCredential
from core.services import ServiceConfig

MARKER_MAX_AGE = 60 * 60 * 24
BACKEND_COOKIE_MAX_AGE = 60 * 60 * 24


def set_marker_cookie(response: Response, service: ServiceConfig, domain: str) -> None:
    response.set_cookie(
        service.marker_cookie,
        value="true",
        max_age=MARKER_MAX_AGE,
        path="/",
        domain=domain or None,
        secure=True,
        httponly=True,
        samesite="none",
    )


def clear_marker_cookie(response: Response, service: ServiceConfig, domain: str) -> None:
    """Expire the marker with the same scope it was set with, or browsers keep it."""
    response.delete_cookie(
        service.marker_cookie,
        path="/",
        domain=domain or None,
        secure=True,
        httponly=True,
        samesite="none",
    )


def forward_backend_cookie(response: Response, credential: CookieCredential) -> None:
    # Written as a raw header: set_cookie() would quote values containing
    # '=' or '/', and the backend expects its cookie value byte-for-byte.
    response.headers.append(
        "set-cookie",
        f"{credential.name}={credential.value}; HttpOnly; Max-Age={BACKEND_COOKIE_MAX_AGE}; "
        "Path=/; SameSite=lax; Secure",
    )
