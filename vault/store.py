"""
vault/store.py -- SQLAlchemy Core persistence for encrypted backend credentials.

Pattern: Repository + Data Mapper (same as auth/store.py).
CredentialVault is the repository; _row_to_stored_credential is the mapper.

Contract:
  set(owner, service, secret)  -- encrypt with a fresh nonce and upsert
  get(owner, service)          -- decrypt; None when no row exists
  delete(owner, service)       -- remove; silent no-op when absent

get() lets DecryptionFailed propagate. A payload that cannot be decrypted is
an operator problem (key rotated, row edited), not an absent credential.

Uniqueness: UNIQUE(owner_user_id, service_name). Upsert is update-then-insert;
an IntegrityError on insert means a concurrent set() created the row first,
so the update is retried once.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, UniqueConstraint, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.models import StoredCredential
from vault.crypto import CredentialCipher

logger = logging.getLogger("homegate.vault")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_credentials = Table(
    "stored_credentials",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_user_id", String(64), nullable=False),
    Column("service_name", String(64), nullable=False),
    Column("encrypted_payload", Text, nullable=False),  # "<nonce hex>:<ciphertext hex>"
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("owner_user_id", "service_name", name="uq_credential_owner_service"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialVault:
    """Repository for StoredCredential rows. The only owner of the table.

    Usage:
        vault = CredentialVault(CredentialCipher(key), "sqlite:///homegate.db")
        vault.set("42", "radarr", {"username": "alice", "password": "s3cret"})
        vault.get("42", "radarr")   # {"username": "alice", "password": "s3cret"}
        vault.close()
    """

    def __init__(self, cipher: CredentialCipher, db_url: str) -> None:
        self.cipher = cipher
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def set(self, owner_user_id: str, service_name: str, secret: Any) -> None:
        """Encrypt secret and upsert the (owner, service) row."""
        payload = self.cipher.encrypt(secret)
        if self._update(owner_user_id, service_name, payload):
            return
        try:
            with self.engine.connect() as conn:
                now = _now_iso()
                conn.execute(
                    _credentials.insert().values(
                        owner_user_id=owner_user_id,
                        service_name=service_name,
                        encrypted_payload=payload,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError:
            logger.info("Concurrent credential insert for %s/%s, updating instead", owner_user_id, service_name)
            self._update(owner_user_id, service_name, payload)

    def get(self, owner_user_id: str, service_name: str) -> Any | None:
        """Return the decrypted secret, or None when nothing is stored.

        Raises DecryptionFailed if the stored payload cannot be decrypted.
        """
        record = self.get_record(owner_user_id, service_name)
        if record is None:
            return None
        return self.cipher.decrypt(record.encrypted_payload)

    def get_record(self, owner_user_id: str, service_name: str) -> StoredCredential | None:
        """Return the raw (still encrypted) row, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _credentials.select().where(
                    (_credentials.c.owner_user_id == owner_user_id) & (_credentials.c.service_name == service_name)
                )
            ).fetchone()
        return _row_to_stored_credential(row) if row is not None else None

    def exists(self, owner_user_id: str, service_name: str) -> bool:
        return self.get_record(owner_user_id, service_name) is not None

    def delete(self, owner_user_id: str, service_name: str) -> None:
        """Remove the (owner, service) row. Deleting a missing row is a no-op."""
        with self.engine.connect() as conn:
            conn.execute(
                _credentials.delete().where(
                    (_credentials.c.owner_user_id == owner_user_id) & (_credentials.c.service_name == service_name)
                )
            )
            conn.commit()

    def list_services(self, owner_user_id: str) -> list[str]:
        """Return the service names provisioned for a user. Never decrypts."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _credentials.select()
                .where(_credentials.c.owner_user_id == owner_user_id)
                .order_by(_credentials.c.service_name)
            ).fetchall()
        return [r.service_name for r in rows]

    def delete_all_for_owner(self, owner_user_id: str) -> int:
        """Remove every credential owned by a user (account deletion). Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_credentials.delete().where(_credentials.c.owner_user_id == owner_user_id))
            conn.commit()
        return result.rowcount

    def _update(self, owner_user_id: str, service_name: str, payload: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _credentials.update()
                .where((_credentials.c.owner_user_id == owner_user_id) & (_credentials.c.service_name == service_name))
                .values(encrypted_payload=payload, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


def _row_to_stored_credential(row) -> StoredCredential:
    return StoredCredential(
        id=row.id,
        owner_user_id=row.owner_user_id,
        service_name=row.service_name,
        encrypted_payload=row.encrypted_payload,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
