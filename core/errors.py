"""
core/errors.py -- Exception taxonomy for the gateway.

Every error a route can surface derives from GatewayError, which carries the
HTTP status and the machine-readable code used in the ErrorResponse envelope.
api/main.py maps GatewayError to JSON in a single exception handler, so the
layers below never import fastapi to report a failure.

Messages are short descriptions only. Decrypted secrets, backend tokens and
raw cookies never appear in an exception message.

Layer rule: core/ is the kernel. No imports from other homegate packages.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base exception for all homegate errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        super().__init__(message)


# ---------------------------------------------------------------------------
# Authentication / authorization
# ---------------------------------------------------------------------------


class AuthenticationRequired(GatewayError):
    """No valid gateway session on the request."""

    status_code = 401
    code = "unauthorized"

    def __init__(self, message: str = "Authentication required.") -> None:
        super().__init__(message)


class AuthorizationDenied(GatewayError):
    """An access decision denied the request. Never retried automatically."""

    status_code = 403
    code = "forbidden"


class OnlyForAdmin(AuthorizationDenied):
    code = "only_for_admin"

    def __init__(self, message: str = "Admin access required.") -> None:
        super().__init__(message)


class NoServiceAccess(AuthorizationDenied):
    code = "no_service_access"

    def __init__(self, service: str) -> None:
        self.service = service
        super().__init__(f"You do not have access to {service}.")


class UnknownService(GatewayError):
    status_code = 404
    code = "unknown_service"

    def __init__(self, service: str) -> None:
        self.service = service
        super().__init__(f"Service {service!r} is not configured.")


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class NoStoredCredential(GatewayError):
    """No StoredCredential for (user, service). An admin must provision one."""

    status_code = 409
    code = "no_stored_credential"

    def __init__(self, user_id: str, service: str) -> None:
        self.user_id = user_id
        self.service = service
        super().__init__(f"No stored credential for {service}. Ask an administrator to provision one.")


class CredentialAlreadyExists(GatewayError):
    status_code = 409
    code = "credential_exists"

    def __init__(self, service: str) -> None:
        super().__init__(f"A stored credential for {service} already exists.")


class DecryptionFailed(GatewayError):
    """Ciphertext was corrupted, truncated, or written under a different key.

    Distinct from "not found": callers must never treat it as
    an absent credential.
    """

    status_code = 500
    code = "decryption_failed"

    def __init__(self, message: str = "Stored credential could not be decrypted.") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Backends and audit
# ---------------------------------------------------------------------------


class BackendLoginFailed(GatewayError):
    """A backend login attempt failed. Always paired with one audit failure entry."""

    status_code = 502
    code = "backend_login_failed"

    def __init__(self, service: str, reason: str) -> None:
        self.service = service
        self.reason = reason
        super().__init__(f"Failed to authenticate with {service}: {reason}")


class AuditWriteFailed(GatewayError):
    status_code = 500
    code = "audit_write_failed"

    def __init__(self, message: str = "Audit log write failed.") -> None:
        super().__init__(message)
