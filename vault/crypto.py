"""
AES-256-GCM encryption for stored backend credentials.

The key is exactly 32 bytes, supplied once at startup (CREDENTIAL_ENCRYPTION_KEY,
32 characters). Every encrypt() call draws a fresh 12-byte nonce, so encrypting
the same secret twice never yields the same payload.

Payload text format: "<nonce hex>:<ciphertext+tag hex>".

GCM authenticates the ciphertext: a payload written under another key, or one
that was truncated or edited, fails the tag check and raises DecryptionFailed.
Corrupt data is never returned.
"""

from __future__ import annotations

import binascii
import json
import secrets
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.errors import DecryptionFailed

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16


def canonical_json(secret: Any) -> bytes:
    """Serialize a structured secret to its canonical byte encoding."""
    return json.dumps(secret, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class CredentialCipher:
    """Encrypts arbitrary JSON-serializable secrets under one process-wide key."""

    def __init__(self, key: str | bytes) -> None:
        if not key:
            raise ValueError("CREDENTIAL_ENCRYPTION_KEY is not set")
        raw = key.encode("utf-8") if isinstance(key, str) else bytes(key)
        if len(raw) != KEY_LENGTH:
            raise ValueError(f"CREDENTIAL_ENCRYPTION_KEY must be {KEY_LENGTH} bytes long, got {len(raw)}")
        self._aesgcm = AESGCM(raw)

    def encrypt(self, secret: Any) -> str:
        nonce = secrets.token_bytes(NONCE_LENGTH)
        ciphertext = self._aesgcm.encrypt(nonce, canonical_json(secret), None)
        return f"{nonce.hex()}:{ciphertext.hex()}"

    def decrypt(self, payload: str) -> Any:
        nonce_hex, sep, cipher_hex = payload.partition(":")
        if not sep:
            raise DecryptionFailed("Encrypted payload is malformed")
        try:
            nonce = bytes.fromhex(nonce_hex)
            ciphertext = bytes.fromhex(cipher_hex)
        except (ValueError, binascii.Error) as exc:
            raise DecryptionFailed("Encrypted payload is not valid hex") from exc
        if len(nonce) != NONCE_LENGTH or len(ciphertext) < TAG_LENGTH:
            raise DecryptionFailed("Encrypted payload is truncated")
        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext, None)
        except InvalidTag as exc:
            raise DecryptionFailed("Encrypted payload failed authentication (wrong key or corrupted data)") from exc
        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise DecryptionFailed("Decrypted payload is not valid JSON") from exc
