"""
api/routes/v1/audit.py -- Read the authentication audit log (admin only).

GET /api/v1/audit?user_id=&service=&status=&limit=

Filters combine with AND; results are newest first. Entries older than the
retention window are purged in the background and never returned here.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditEntryResponse, AuditStatusEnum
from audit.store import DEFAULT_QUERY_LIMIT, AuditLog
from auth.dependencies import require_admin
from auth.models import User

router = APIRouter()


@router.get("/audit", response_model=list[AuditEntryResponse])
def query_audit(
    request: Request,
    user_id: Optional[str] = Query(default=None, max_length=64),
    service: Optional[str] = Query(default=None, max_length=32),
    status: Optional[AuditStatusEnum] = None,
    limit: int = Query(default=DEFAULT_QUERY_LIMIT, ge=1, le=1000),
    current_user: User = Depends(require_admin),
) -> list[AuditEntryResponse]:
    audit: AuditLog = request.app.state.audit
    entries = audit.query(
        user_id=user_id,
        service=service,
        status=status.value if status is not None else None,
        limit=limit,
    )
    return [
        AuditEntryResponse(
            id=e.id,
            user_id=e.user_id,
            service=e.service,
            status=e.status,
            reason=e.reason,
            path=e.path,
            created_at=e.created_at,
        )
        for e in entries
    ]
