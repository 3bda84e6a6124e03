"""
audit/store.py -- Append-only audit trail of backend authentication attempts.

Every bridge login attempt (and every cache hit) writes one row:
    {user_id, service, status: success|fail, reason?, path?, created_at}

Rows are never updated. They expire after the retention window (90 days by
default); purge_expired() is the expiry sweep and is run periodically by the
API lifespan task, so entries past the window are not guaranteed queryable.

Failure policy: unlike a best-effort telemetry log, a broken audit store is
reported. record() logs the storage error and raises AuditWriteFailed; it
never returns as if the write succeeded.

query() filters are optional and AND-combined; results are newest first.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import AuditWriteFailed
from core.models import AUDIT_FAIL, AUDIT_SUCCESS, AuditLogEntry

logger = logging.getLogger("homegate.audit")

DEFAULT_RETENTION_DAYS = 90
DEFAULT_QUERY_LIMIT = 100

_STATUSES = {AUDIT_SUCCESS, AUDIT_FAIL}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_audit_log = Table(
    "audit_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False),
    Column("service", String(64), nullable=False),
    Column("status", String(10), nullable=False),  # "success" | "fail"
    Column("reason", Text),
    Column("path", String(255)),
    Column("created_at", String(32), nullable=False),  # ISO 8601 UTC, sortable
    Index("ix_audit_user_created", "user_id", "created_at"),
    Index("ix_audit_service_created", "service", "created_at"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AuditLog:
    """Repository for AuditLogEntry rows.

    Usage:
        audit = AuditLog("sqlite:///homegate.db")
        audit.record("42", "jellyfin", "success", "New token generated", "/auth")
        audit.query(service="jellyfin", status="fail", limit=20)
    """

    def __init__(self, db_url: str, retention_days: int = DEFAULT_RETENTION_DAYS) -> None:
        self.retention_days = retention_days
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def record(
        self,
        user_id: str,
        service: str,
        status: str,
        reason: Optional[str] = None,
        path: Optional[str] = None,
    ) -> None:
        """Append one entry. Raises AuditWriteFailed if the store rejects the write."""
        if status not in _STATUSES:
            raise ValueError(f"Unknown audit status: {status!r}")
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _audit_log.insert().values(
                        user_id=user_id,
                        service=service,
                        status=status,
                        reason=reason,
                        path=path,
                        created_at=_now().isoformat(),
                    )
                )
                conn.commit()
        except SQLAlchemyError as exc:
            logger.error("Audit write failed for %s/%s (%s): %s", user_id, service, status, exc)
            raise AuditWriteFailed() from exc

    def query(
        self,
        user_id: Optional[str] = None,
        service: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> list[AuditLogEntry]:
        """Return entries matching every given filter, newest first."""
        stmt = _audit_log.select()
        if user_id:
            stmt = stmt.where(_audit_log.c.user_id == user_id)
        if service:
            stmt = stmt.where(_audit_log.c.service == service)
        if status:
            stmt = stmt.where(_audit_log.c.status == status)
        # id breaks ties between rows written within the same microsecond
        stmt = stmt.order_by(_audit_log.c.created_at.desc(), _audit_log.c.id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_entry(r) for r in rows]

    def purge_expired(self) -> int:
        """Delete entries older than the retention window. Returns rows removed."""
        cutoff = (_now() - timedelta(days=self.retention_days)).isoformat()
        with self.engine.connect() as conn:
            result = conn.execute(_audit_log.delete().where(_audit_log.c.created_at < cutoff))
            conn.commit()
        if result.rowcount:
            logger.info("Purged %d audit entries older than %d days", result.rowcount, self.retention_days)
        return result.rowcount

    def ping(self) -> bool:
        """Cheap connectivity check for the health endpoint."""
        try:
            with self.engine.connect() as conn:
                conn.execute(_audit_log.select().limit(1)).fetchall()
            return True
        except SQLAlchemyError:
            return False

    def close(self) -> None:
        self.engine.dispose()


def _row_to_entry(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        user_id=row.user_id,
        service=row.service,
        status=row.status,
        reason=row.reason,
        path=row.path,
        created_at=row.created_at,
    )
