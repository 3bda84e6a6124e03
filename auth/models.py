"""
auth/models.py -- Domain dataclass for gateway accounts.

Pattern: Data class (pure data container, zero logic beyond the identity
projection). The store does the work.

Layer rule: no imports from api/ or gateway/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from core.models import Identity


@dataclass
class User:
    """A gateway account.

    allowed_services is the per-service allow-list for role "user". Admins
    bypass it. None means the stored value was absent or malformed, which
    access control treats the same as an empty list.
    """

    username: str
    role: str  # "admin" | "user"
    id: int | None = None
    hashed_password: str | None = None
    allowed_services: list[str] | None = field(default_factory=list)
    email: str | None = None
    created_at: str | None = None
    last_login: str | None = None
    is_active: bool = True

    def to_identity(self) -> Identity:
        allowed = frozenset(self.allowed_services) if self.allowed_services is not None else None
        return Identity(user_id=str(self.id), role=self.role, allowed_services=allowed, username=self.username)


@dataclass
class UserSession:
    """A live gateway login. id is the sha256 of the token, never the token."""

    id: str
    user_id: int
    created_at: str
    user_agent: str | None = None
    ip: str | None = None
