"""
auth/access.py -- Access control decisions.

Both primitives are pure functions of an Identity (plus the target service).
They return an AccessDecision value instead of raising; the HTTP layer turns a
denial into the matching AuthorizationDenied error. Authorization always runs
before any bridge call, so a denied request never reaches a backend and never
writes an audit row.

  require_admin(identity)                    allow iff role == "admin"
  require_service_access(identity, service)  admins always; otherwise exact,
                                             case-sensitive allow-list match
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from core.errors import AuthorizationDenied, NoServiceAccess, OnlyForAdmin
from core.models import Identity


class Denial(str, Enum):
    only_for_admin = "only_for_admin"
    no_service_access = "no_service_access"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    denial: Optional[Denial] = None
    service: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed

    def to_error(self) -> AuthorizationDenied:
        """The error a denied decision maps to. Only valid when not allowed."""
        if self.allowed:
            raise ValueError("an allowed decision has no error")
        if self.denial is Denial.only_for_admin:
            return OnlyForAdmin()
        return NoServiceAccess(self.service or "")


ALLOW = AccessDecision(allowed=True)


def require_admin(identity: Identity) -> AccessDecision:
    if identity.is_admin:
        return ALLOW
    return AccessDecision(allowed=False, denial=Denial.only_for_admin)


def require_service_access(identity: Identity, service: str) -> AccessDecision:
    if identity.is_admin:
        return ALLOW
    allowed = identity.allowed_services
    if service and isinstance(allowed, frozenset) and service in allowed:
        return ALLOW
    return AccessDecision(allowed=False, denial=Denial.no_service_access, service=service)
