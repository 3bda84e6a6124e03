"""
API request and response models for homegate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py and
auth/models.py, which own the internal domain representation. Route handlers
map between the two.

Secrets never appear in a response model: credential endpoints accept the
backend username/password on the way in and only ever return service names.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SERVICE_PATTERN = r"^[a-z][a-z0-9_-]{0,31}$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    admin = "admin"
    user = "user"


class AuditStatusEnum(str, Enum):
    success = "success"
    fail = "fail"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "healthy" when every component reports "ok", "degraded" otherwise.
    """

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Session auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=150)
    password: str = Field(min_length=1, max_length=72)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str
    role: RoleEnum


class MeResponse(BaseModel):
    """Identity of the session's user, including the services they may open."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str
    role: RoleEnum
    email: Optional[str] = None
    allowed_services: list[str] = Field(default_factory=list)


class ServiceLogoutResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    service: str
    invalidated: bool


class SessionResponse(BaseModel):
    """One live gateway login. id is a digest of the token, safe to show."""

    model_config = ConfigDict(frozen=True)

    id: str
    created_at: str
    user_agent: Optional[str] = None
    ip: Optional[str] = None
    current: bool = False


class SessionRevokeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    revoked: int


# ---------------------------------------------------------------------------
# User management (admin)
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=150)
    password: str = Field(min_length=8, max_length=72)
    role: RoleEnum = RoleEnum.user
    email: Optional[str] = Field(default=None, max_length=255)
    allowed_services: list[str] = Field(default_factory=list, max_length=32)

    @field_validator("allowed_services")
    @classmethod
    def dedupe_services(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(s.strip().lower() for s in v if s.strip()))


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id}. Omitted fields are left alone."""

    role: Optional[RoleEnum] = None
    is_active: Optional[bool] = None
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, min_length=8, max_length=72)
    allowed_services: Optional[list[str]] = Field(default=None, max_length=32)

    @field_validator("allowed_services")
    @classmethod
    def dedupe_services(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return None
        return list(dict.fromkeys(s.strip().lower() for s in v if s.strip()))


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: RoleEnum
    email: Optional[str] = None
    allowed_services: list[str] = Field(default_factory=list)
    is_active: bool
    created_at: str
    last_login: Optional[str] = None


# ---------------------------------------------------------------------------
# Stored credentials (admin)
# ---------------------------------------------------------------------------


class CredentialCreate(BaseModel):
    """Request body for POST /api/v1/credentials.

    username/password are the user's login for the backend service. They are
    encrypted into the vault and never returned.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(min_length=1, max_length=64)
    service: str = Field(pattern=SERVICE_PATTERN)
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=1024)


class CredentialUpdate(BaseModel):
    """Request body for PUT /api/v1/credentials/{user_id}/{service}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=1024)


class CredentialListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    services: list[str]


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    service: str
    status: AuditStatusEnum
    reason: Optional[str] = None
    path: Optional[str] = None
    created_at: str


# ---------------------------------------------------------------------------
# Support
# ---------------------------------------------------------------------------


class ServiceStatusResponse(BaseModel):
    """Reachability of every configured service's public URL."""

    model_config = ConfigDict(frozen=True)

    services: dict[str, bool]


class ServiceAccessResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    services: list[str]


class IsAdminResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_admin: bool
