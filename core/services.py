"""
core/services.py -- Registry of the backend services the gateway fronts.

Each enabled backend becomes one ServiceConfig. The kind field selects the
bridge strategy (token or cookie), so adding a backend of an existing kind is
a configuration change only.

A backend is enabled when its *_BASE_URL setting is non-empty.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from core.config import Settings
from core.models import BackendKind

TOKEN_LOGIN_PATH = "/Users/AuthenticateByName"
COOKIE_LOGIN_PATH = "/login"


@dataclass(frozen=True)
class ServiceConfig:
    name: str
    kind: BackendKind
    base_url: str  # internal address the gateway logs in against
    public_url: str  # address the browser is redirected to
    login_path: str
    cookie_name: Optional[str] = None  # cookie-kind only
    bridge_path: Optional[str] = None  # token-kind only
    client_header: Optional[str] = None  # token-kind only

    @property
    def login_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.login_path}"

    @property
    def marker_cookie(self) -> str:
        return f"{self.name}_auth"

    def cache_key(self, user_id: str) -> str:
        """Key of this service's derived credential for user_id in the credential cache."""
        return f"{self.name}:{self.kind.value}:{user_id}"


def build_service_configs(settings: Settings) -> dict[str, ServiceConfig]:
    """Return {service_name: ServiceConfig} for every backend with a base URL."""
    services: dict[str, ServiceConfig] = {}

    if settings.jellyfin_base_url:
        services["jellyfin"] = ServiceConfig(
            name="jellyfin",
            kind=BackendKind.token,
            base_url=settings.jellyfin_base_url,
            public_url=settings.jellyfin_public_url or settings.jellyfin_base_url,
            login_path=TOKEN_LOGIN_PATH,
            bridge_path=settings.jellyfin_bridge_path,
            client_header=settings.jellyfin_client_header,
        )

    for name, cookie_name in (
        ("radarr", settings.radarr_cookie_name),
        ("sonarr", settings.sonarr_cookie_name),
    ):
        base_url = getattr(settings, f"{name}_base_url")
        if not base_url:
            continue
        services[name] = ServiceConfig(
            name=name,
            kind=BackendKind.cookie,
            base_url=base_url,
            public_url=getattr(settings, f"{name}_public_url") or base_url,
            login_path=COOKIE_LOGIN_PATH,
            cookie_name=cookie_name,
        )

    return services
