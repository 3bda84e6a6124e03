"""
gateway/routes.py -- Per-service front door.

Every configured backend is reachable at /{service} and /{service}/{path}
(any method). For each request:

  1. The session must resolve to an active account (AuthenticationRequired).
  2. require_service_access must allow the caller (NoServiceAccess).
  3. Without the "{service}_auth" marker cookie:
       a. the service's bridge resolves a backend credential,
       b. the marker cookie is set,
       c. token-kind:  302 to {public_url}{bridge_path}?token=&userId=&serverId=
          cookie-kind: the backend cookie is forwarded, then 302 to public_url.
  4. With the marker cookie:
       cookie-kind: 302 to public_url.
       token-kind:  204, the browser's existing backend session is left alone.

Backend traffic itself is not proxied here; the browser is sent to the
backend's public URL once it holds a credential.

The handler is a plain def so FastAPI runs it in the threadpool: the bridge
does blocking network and database I/O, and a client disconnect does not
interrupt a login or audit write that is already in flight.

Token query parameters are bearer material. They are never logged.

Layer rule: gateway/ imports from auth/, bridge/ and core/. It does NOT import
from api/; asgi.py mounts this router next to the API.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse, Response

from auth.access import require_service_access
from auth.cookies import forward_backend_cookie, set_marker_cookie
from auth.dependencies import get_identity
from bridge.base import DownstreamAuthBridge
from core.errors import UnknownService
from core.models import BackendKind, CookieCredential, Identity, TokenCredential
from core.services import ServiceConfig

logger = logging.getLogger("homegate.gateway")

_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

router = APIRouter()


def _lookup(request: Request, service: str) -> DownstreamAuthBridge:
    bridges: dict[str, DownstreamAuthBridge] = request.app.state.bridges
    bridge = bridges.get(service)
    if bridge is None:
        raise UnknownService(service)
    return bridge


def _token_redirect(config: ServiceConfig, credential: TokenCredential) -> RedirectResponse:
    query = urlencode(
        {
            "token": credential.access_token,
            "userId": credential.user_id,
            "serverId": credential.server_id,
        }
    )
    target = f"{config.public_url.rstrip('/')}{config.bridge_path or ''}?{query}"
    return RedirectResponse(target, status_code=302)


@router.api_route("/{service}", methods=_METHODS, include_in_schema=False)
@router.api_route("/{service}/{path:path}", methods=_METHODS, include_in_schema=False)
def front_door(
    request: Request,
    service: str,
    path: str = "",
    identity: Identity = Depends(get_identity),
) -> Response:
    """Bridge the caller into a backend service, then send the browser there."""
    bridge = _lookup(request, service)
    config = bridge.service

    decision = require_service_access(identity, service)
    if not decision.allowed:
        logger.info("Denied %s access to %s", identity.user_id, service)
        raise decision.to_error()

    already_bridged = bool(request.cookies.get(config.marker_cookie))
    if already_bridged:
        if config.kind is BackendKind.cookie:
            return RedirectResponse(config.public_url, status_code=302)
        return Response(status_code=204)

    credential = bridge.resolve_credential(identity.user_id)

    if isinstance(credential, TokenCredential):
        response = _token_redirect(config, credential)
    elif isinstance(credential, CookieCredential):
        response = RedirectResponse(config.public_url, status_code=302)
        forward_backend_cookie(response, credential)
    else:
        raise TypeError(f"Unsupported credential type {type(credential).__name__}")

    set_marker_cookie(response, config, request.app.state.settings.cookie_domain)
    logger.info("Bridged user %s into %s", identity.user_id, service)
    return response
