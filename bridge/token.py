"""
bridge/token.py -- Token-kind backends (media server authenticate-by-name).

Login: POST {base_url}/Users/AuthenticateByName with JSON {"Username", "Pw"}
and the client identification header (X-Emby-Authorization). A usable response
carries all three of AccessToken, ServerId and User.Id; any one missing is a
failure even on HTTP 200.

The cached triple gets no explicit TTL here. Its lifetime is whatever the
cache's default_ttl is (CACHE_DEFAULT_TTL, 0 = until invalidated).
"""

from __future__ import annotations

from typing import Any

from bridge.base import BackendResponseError, DownstreamAuthBridge, login_fields
from core.models import TokenCredential

CLIENT_HEADER = "X-Emby-Authorization"


class TokenBridge(DownstreamAuthBridge):
    cache_kind = "token"
    cache_ttl = None

    def _login(self, secret: Any) -> TokenCredential:
        username, password = login_fields(secret)
        resp = self.http.post(
            self.service.login_url,
            json={"Username": username, "Pw": password},
            headers={
                "Content-Type": "application/json",
                CLIENT_HEADER: self.service.client_header or "",
            },
            timeout=self.timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise BackendResponseError(f"Unexpected response body from {self.name}")
        user = data.get("User") if isinstance(data.get("User"), dict) else {}
        access_token = data.get("AccessToken")
        server_id = data.get("ServerId")
        backend_user_id = user.get("Id")
        if not access_token or not server_id or not backend_user_id:
            raise BackendResponseError(f"No access token, server id or user id received from {self.name}")
        return TokenCredential(access_token=access_token, server_id=server_id, user_id=backend_user_id)

    def _decode(self, raw: str) -> TokenCredential:
        return TokenCredential.from_cache(raw)
