"""
bridge/base.py -- Shared state machine for backend authentication bridges.

resolve_credential(user_id) walks the same path for every backend kind:

    cache hit  -> audit success "Using cached {kind}"     -> return cached
    cache miss -> vault lookup (NoStoredCredential if none)
               -> exactly one login request to the backend
                  ok   -> audit success "New {kind} generated" -> cache -> return
                  fail -> audit fail "Authentication failed: ..." -> BackendLoginFailed

Subclasses supply only the backend-specific parts: _login() performs the
request and parses the response, _decode() rebuilds a credential from the
cached string, and cache_ttl sets the lifetime of a fresh entry.

Ordering: the audit row for an attempt is written after its outcome is known
and before the credential is cached, so nothing is cached or returned
without a recorded login. The cache is written only after the backend
response has been fully parsed.

Concurrent cache misses for the same (user, service) are not deduplicated;
each performs its own login and writes its own audit row.

Secrets, tokens and cookies are never logged and never appear in an audit
reason.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import requests

from audit.store import AuditLog
from cache.store import CredentialCache
from core.errors import BackendLoginFailed, NoStoredCredential
from core.models import AUDIT_FAIL, AUDIT_SUCCESS, BackendCredential
from core.services import ServiceConfig
from vault.store import CredentialVault

logger = logging.getLogger("homegate.bridge")

AUDIT_PATH = "/auth"
DEFAULT_TIMEOUT = 10.0
_MAX_REASON = 200


class BackendResponseError(Exception):
    """The backend answered, but not with a usable credential."""


class DownstreamAuthBridge(ABC):
    """Resolves a backend-native credential for a gateway user."""

    cache_kind: str = ""
    cache_ttl: Optional[int] = None  # None = leave expiry to the cache default

    def __init__(
        self,
        service: ServiceConfig,
        vault: CredentialVault,
        cache: CredentialCache,
        audit: AuditLog,
        http: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.service = service
        self.vault = vault
        self.cache = cache
        self.audit = audit
        self.http = http if http is not None else requests.Session()
        self.timeout = timeout

    @property
    def name(self) -> str:
        return self.service.name

    def cache_key(self, user_id: str) -> str:
        return self.service.cache_key(user_id)

    def resolve_credential(self, user_id: str) -> BackendCredential:
        """Return a cached credential or log in to the backend for a new one.

        Raises:
            NoStoredCredential: cache miss and nothing provisioned in the vault.
            DecryptionFailed:   the stored payload cannot be decrypted.
            BackendLoginFailed: the login request failed; one fail row is audited.
            AuditWriteFailed:   the audit store rejected the write.
        """
        key = self.cache_key(user_id)
        cached = self._cached(key)
        if cached is not None:
            self.audit.record(user_id, self.name, AUDIT_SUCCESS, f"Using cached {self.cache_kind}", AUDIT_PATH)
            return cached

        secret = self.vault.get(user_id, self.name)
        if secret is None:
            raise NoStoredCredential(user_id, self.name)

        logger.info("Logging in to %s for user %s", self.name, user_id)
        try:
            credential = self._login(secret)
        except (BackendResponseError, requests.RequestException, ValueError) as exc:
            reason = _describe_failure(exc)
            logger.warning("Login to %s failed for user %s: %s", self.name, user_id, reason)
            self.audit.record(user_id, self.name, AUDIT_FAIL, f"Authentication failed: {reason}", AUDIT_PATH)
            raise BackendLoginFailed(self.name, reason) from exc

        self.audit.record(user_id, self.name, AUDIT_SUCCESS, f"New {self.cache_kind} generated", AUDIT_PATH)
        self.cache.set(key, credential.to_cache(), ttl=self.cache_ttl)
        return credential

    def invalidate(self, user_id: str) -> bool:
        """Drop the cached credential (logout-for-service). Returns True if one existed."""
        return self.cache.delete(self.cache_key(user_id))

    def _cached(self, key: str) -> Optional[BackendCredential]:
        raw = self.cache.get(key)
        if raw is None:
            return None
        try:
            return self._decode(raw)
        except (ValueError, KeyError, TypeError):
            # Unreadable entry: drop it and fall through to a fresh login.
            logger.warning("Discarding unreadable cache entry %s", key)
            self.cache.delete(key)
            return None

    @abstractmethod
    def _login(self, secret: Any) -> BackendCredential:
        """Perform the single backend login request and parse the response."""

    @abstractmethod
    def _decode(self, raw: str) -> BackendCredential:
        """Rebuild a credential from its cached string form."""


def login_fields(secret: Any) -> tuple[str, str]:
    """Extract (username, password) from a stored secret."""
    if not isinstance(secret, dict):
        raise BackendResponseError("Stored credential is not a username/password record")
    username = secret.get("username")
    password = secret.get("password")
    if not username or password is None:
        raise BackendResponseError("Stored credential has no username or password")
    return str(username), str(password)


def _describe_failure(exc: Exception) -> str:
    """Short, secret-free description of a login failure for audit and errors."""
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        message = f"HTTP {exc.response.status_code}"
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("message"), str):
            message = f"{message}: {body['message']}"
    elif isinstance(exc, requests.Timeout):
        message = "Backend did not respond in time"
    elif isinstance(exc, requests.ConnectionError):
        message = "Could not connect to backend"
    else:
        message = str(exc) or type(exc).__name__
    return message[:_MAX_REASON]
