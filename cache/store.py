"""
cache/store.py -- SQLite-backed key/value cache for derived backend credentials.

Holds the short-lived tokens and cookies the bridges obtain from backend
logins so a user is not logged in again on every request. Entries are plain
strings under keys of the form "{service}:{kind}:{user_id}".

Each entry carries its own expiry. set() takes an optional ttl in seconds;
when omitted the store's default_ttl applies, and a default of 0 means the
entry never expires on its own. Callers needing a bounded lifetime pass it
explicitly.

Usage:
    cache = CredentialCache()
    cache.set("radarr:cookie:42", "RadarrAuth=abc; Path=/", ttl=86400)
    cache.get("radarr:cookie:42")   # returns str or None
    cache.delete("radarr:cookie:42")
    cache.purge_expired()           # call periodically to trim old entries
"""

import sqlite3
import threading
import time
from pathlib import Path
from typing import Optional, Union

_DEFAULT_DB = Path(__file__).parent / "homegate_cache.db"
_DEFAULT_TTL = 0  # never expires

_DDL = """
CREATE TABLE IF NOT EXISTS kv_cache (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    expires_at  REAL
);
"""


class CredentialCache:
    def __init__(self, db_path: Union[Path, str] = _DEFAULT_DB, default_ttl: int = _DEFAULT_TTL) -> None:
        self.default_ttl = default_ttl
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        if str(db_path) != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, key: str) -> Optional[str]:
        """Return the cached value for key if it exists and hasn't expired."""
        with self._lock:
            row = self._conn.execute("SELECT value, expires_at FROM kv_cache WHERE key = ?", (key,)).fetchone()
            if row is None:
                return None
            value, expires_at = row
            if expires_at is not None and time.time() >= expires_at:
                self._conn.execute("DELETE FROM kv_cache WHERE key = ?", (key,))
                self._conn.commit()
                return None
            return value

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        """Store value under key, replacing any existing entry."""
        effective = self.default_ttl if ttl is None else ttl
        expires_at = time.time() + effective if effective > 0 else None
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv_cache (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, expires_at),
            )
            self._conn.commit()

    def delete(self, key: str) -> bool:
        """Remove key. Returns True if an entry was removed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM kv_cache WHERE key = ?", (key,))
            self._conn.commit()
        return cursor.rowcount > 0

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until key expires; None if key is missing or has no expiry."""
        with self._lock:
            row = self._conn.execute("SELECT expires_at FROM kv_cache WHERE key = ?", (key,)).fetchone()
        if row is None or row[0] is None:
            return None
        return max(0.0, row[0] - time.time())

    def purge_expired(self) -> int:
        """Delete all entries past their expiry. Returns number of rows removed."""
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM kv_cache WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (time.time(),),
            )
            self._conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()
