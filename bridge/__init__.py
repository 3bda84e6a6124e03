"""bridge/ -- Translate a gateway identity into each backend's native credential.

One DownstreamAuthBridge interface, two strategies selected per backend by
ServiceConfig.kind: TokenBridge (JSON authenticate-by-name) and CookieBridge
(form login returning a session cookie).

Layer rule: bridge/ imports core/, vault/, audit/ and cache/. It never imports
fastapi; api/ and gateway/ call into it.
"""

from __future__ import annotations

from typing import Optional

import requests

from audit.store import AuditLog
from bridge.base import DownstreamAuthBridge
from bridge.cookie import CookieBridge
from bridge.token import TokenBridge
from cache.store import CredentialCache
from core.models import BackendKind
from core.services import ServiceConfig
from vault.store import CredentialVault

_STRATEGIES: dict[BackendKind, type[DownstreamAuthBridge]] = {
    BackendKind.token: TokenBridge,
    BackendKind.cookie: CookieBridge,
}


def build_bridges(
    services: dict[str, ServiceConfig],
    vault: CredentialVault,
    cache: CredentialCache,
    audit: AuditLog,
    http: Optional[requests.Session] = None,
    timeout: float = 10.0,
) -> dict[str, DownstreamAuthBridge]:
    """Return {service_name: bridge} sharing one HTTP session for connection pooling."""
    session = http if http is not None else requests.Session()
    return {
        name: _STRATEGIES[config.kind](config, vault, cache, audit, http=session, timeout=timeout)
        for name, config in services.items()
    }


__all__ = ["CookieBridge", "DownstreamAuthBridge", "TokenBridge", "build_bridges"]
