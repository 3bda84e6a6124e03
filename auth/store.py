"""
auth/store.py -- SQLAlchemy Core persistence layer for gateway accounts.

Pattern: Repository + Data Mapper (same as vault/store.py and audit/store.py).
UserStore is the repository; _row_to_user is the mapper. Route and dependency
code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

allowed_services is stored as a JSON array in a TEXT column. A value that does
not decode to a list of strings maps to None rather than raising, so a
hand-edited row denies service access instead of crashing the request.

Sessions: every login inserts a user_sessions row keyed by the sha256 of a
random token that the signed session cookie carries. A cookie counts only
while its row exists, so logout, "log out everywhere", deactivation and
deletion revoke it on the server. User ids are AUTOINCREMENT and never reused.

Layer rule: no imports from api/ or gateway/.
"""

from __future__ import annotations

import hashlib
import json
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import User, UserSession

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("allowed_services", Text),  # JSON array of service names
    Column("email", String(255)),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    # Ids are never reused, so nothing keyed on a deleted account can match a new one.
    sqlite_autoincrement=True,
)

_sessions = Table(
    "user_sessions",
    _metadata,
    Column("id", String(64), primary_key=True),  # sha256 of the session token
    Column("user_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("user_agent", String(255)),
    Column("ip", String(64)),
    Index("ix_user_sessions_user", "user_id"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def session_digest(token: str) -> str:
    """Registry key of a session token, also used as its public id."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _encode_services(services: list[str] | None) -> str:
    return json.dumps(sorted(set(services or [])))


def _decode_services(raw: str | None) -> list[str] | None:
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        return None
    return value


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///homegate.db")
        store.create_user(User(username="admin", role="admin", hashed_password=hash_password("secret")))
        user = store.get_by_username("admin")
        store.close()
    """

    _UPDATABLE: set = {"role", "is_active", "allowed_services", "hashed_password", "email"}

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    allowed_services=_encode_services(user.allowed_services),
                    email=user.email,
                    created_at=_now_iso(),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int | str) -> User | None:
        """Look up a user by primary key. Returns None if not found or if the id is not numeric."""
        try:
            key = int(user_id)
        except (TypeError, ValueError):
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == key)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by username. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, is_active, allowed_services, hashed_password, email.
        Deactivating a user also ends every session they hold.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if "allowed_services" in fields:
            fields["allowed_services"] = _encode_services(fields["allowed_services"])
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            if fields.get("is_active") == 0:
                conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount > 0

    def count_active_admins(self) -> int:
        """Return the number of active admin users."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where((_users.c.role == "admin") & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        The user's sessions go with it. Callers must check last-admin
        invariants and remove the user's stored credentials; the store does
        neither.
        """
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, user_id: int, user_agent: str | None = None, ip: str | None = None) -> str:
        """Register a new login for user_id and return its bearer token.

        Only the sha256 of the token is stored; the token itself lives in the
        signed session cookie.
        """
        token = secrets.token_urlsafe(32)
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session_digest(token),
                    user_id=user_id,
                    created_at=_now_iso(),
                    user_agent=(user_agent or "")[:255] or None,
                    ip=ip,
                )
            )
            conn.commit()
        return token

    def session_owner(self, token: str) -> int | None:
        """Return the user id a live session token belongs to, or None."""
        with self.engine.connect() as conn:
            return conn.execute(select(_sessions.c.user_id).where(_sessions.c.id == session_digest(token))).scalar()

    def list_sessions(self, user_id: int) -> list[UserSession]:
        """Return the user's live sessions, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def delete_session(self, token: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_digest(token)))
            conn.commit()
        return result.rowcount > 0

    def delete_sessions_for_user(self, user_id: int) -> int:
        """End every session of a user. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def purge_sessions(self, max_age_seconds: int) -> int:
        """Drop sessions older than the session cookie lifetime."""
        cutoff = (datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds)).isoformat()
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.created_at < cutoff))
            conn.commit()
        return result.rowcount

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(func.count()).select_from(_users)).scalar()
            return True
        except SQLAlchemyError:
            return False

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        role=row.role,
        allowed_services=_decode_services(row.allowed_services),
        email=row.email,
        created_at=row.created_at,
        last_login=row.last_login,
        is_active=bool(row.is_active),
    )


def _row_to_session(row) -> UserSession:
    return UserSession(
        id=row.id,
        user_id=row.user_id,
        created_at=row.created_at,
        user_agent=row.user_agent,
        ip=row.ip,
    )
