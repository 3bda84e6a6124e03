"""
core/models.py -- Domain dataclasses shared across the gateway.

Pure data containers. Stores and bridges do the work; routes map these to
the Pydantic transport models in api/models.py.

BackendCredential is an explicit tagged union: TokenCredential for token-kind
backends, CookieCredential for cookie-kind backends. Each knows how to turn
itself into the JSON string held in the cache and back.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

ROLE_ADMIN = "admin"
ROLE_USER = "user"

AUDIT_SUCCESS = "success"
AUDIT_FAIL = "fail"


class BackendKind(str, Enum):
    token = "token"
    cookie = "cookie"


# ---------------------------------------------------------------------------
# Identity (read, never mutated, by the core)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Identity:
    """The authenticated caller.

    allowed_services is None when the stored allow-list is absent or
    malformed; access control treats that exactly like an empty list.
    """

    user_id: str
    role: str
    allowed_services: Optional[frozenset[str]] = None
    username: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


# ---------------------------------------------------------------------------
# Derived credentials
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenCredential:
    access_token: str
    server_id: str
    user_id: str
    kind: BackendKind = field(default=BackendKind.token, init=False)

    def to_cache(self) -> str:
        return json.dumps({"accessToken": self.access_token, "serverId": self.server_id, "userId": self.user_id})

    @classmethod
    def from_cache(cls, raw: str) -> "TokenCredential":
        data = json.loads(raw)
        return cls(access_token=data["accessToken"], server_id=data["serverId"], user_id=data["userId"])


@dataclass(frozen=True)
class CookieCredential:
    """raw_cookie is the backend's Set-Cookie value, attributes included."""

    raw_cookie: str
    kind: BackendKind = field(default=BackendKind.cookie, init=False)

    @property
    def name(self) -> str:
        return self.raw_cookie.split(";", 1)[0].partition("=")[0].strip()

    @property
    def value(self) -> str:
        return self.raw_cookie.split(";", 1)[0].partition("=")[2].strip()

    def to_cache(self) -> str:
        return self.raw_cookie

    @classmethod
    def from_cache(cls, raw: str) -> "CookieCredential":
        return cls(raw_cookie=raw)


BackendCredential = Union[TokenCredential, CookieCredential]


# ---------------------------------------------------------------------------
# Persistence records
# ---------------------------------------------------------------------------


@dataclass
class StoredCredential:
    """One encrypted secret per (owner_user_id, service_name). Owned by the vault."""

    owner_user_id: str
    service_name: str
    encrypted_payload: str
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class AuditLogEntry:
    """Append-only record of one authentication attempt."""

    user_id: str
    service: str
    status: str  # "success" | "fail"
    reason: Optional[str] = None
    path: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by the store on insert
