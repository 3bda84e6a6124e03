"""
bridge/cookie.py -- Cookie-kind backends (download managers' form login).

Login: POST {base_url}/login form-encoded {username, password, rememberMe=on}
with redirects disabled. Exactly HTTP 302 is success; any other status,
including 200, is a failure whatever the body says. The backend's named
session cookie must be present in Set-Cookie.

The raw Set-Cookie string is cached for exactly 24 hours.
"""

from __future__ import annotations

import re
from typing import Any

import requests

from bridge.base import BackendResponseError, DownstreamAuthBridge, login_fields
from core.models import CookieCredential

COOKIE_TTL = 60 * 60 * 24  # 24 hours

# A comma starts a new cookie only when a "name=" follows it; the comma inside
# "expires=Sat, 01 Jan 2033 ..." is followed by a date.
_FOLDED_COOKIE_SPLIT = re.compile(r",\s*(?=[^;,\s=]+=)")


class CookieBridge(DownstreamAuthBridge):
    cache_kind = "cookie"
    cache_ttl = COOKIE_TTL

    def _login(self, secret: Any) -> CookieCredential:
        username, password = login_fields(secret)
        resp = self.http.post(
            self.service.login_url,
            data={"username": username, "password": password, "rememberMe": "on"},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            allow_redirects=False,
            timeout=self.timeout,
        )
        if resp.status_code != 302:
            raise BackendResponseError(f"Unexpected status {resp.status_code} from {self.name} login")
        cookie_name = self.service.cookie_name or ""
        prefix = f"{cookie_name}="
        for header in set_cookie_headers(resp):
            if header.startswith(prefix):
                return CookieCredential(raw_cookie=header)
        raise BackendResponseError(f"No {cookie_name} cookie received from {self.name}")

    def _decode(self, raw: str) -> CookieCredential:
        if not raw:
            raise ValueError("empty cookie entry")
        return CookieCredential.from_cache(raw)


def set_cookie_headers(resp: requests.Response) -> list[str]:
    """Every Set-Cookie header on the response, unmerged.

    requests folds repeated headers into one comma-joined value, which is
    ambiguous for cookies carrying an Expires date. The underlying urllib3
    header dict keeps them apart. Without it, the folded value is split at
    commas that start a new name=value pair.
    """
    raw_headers = getattr(resp.raw, "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        values = raw_headers.getlist("Set-Cookie")
        if values:
            return list(values)
    folded = resp.headers.get("Set-Cookie")
    if not folded:
        return []
    return [part.strip() for part in _FOLDED_COOKIE_SPLIT.split(folded) if part.strip()]
