"""Unit tests for vault/crypto.py -- AES-256-GCM credential cipher.

Covers:
- payload text format and per-call nonces
- wrong key, tampering and malformed payloads all raise DecryptionFailed
- key length validation at construction
"""

import pytest

from core.errors import DecryptionFailed
from vault.crypto import NONCE_LENGTH, CredentialCipher, canonical_json

KEY = "k" * 32
OTHER_KEY = "z" * 32
SECRET = {"username": "alice", "password": "p@ss:word"}


@pytest.fixture
def cipher() -> CredentialCipher:
    return CredentialCipher(KEY)


def test_decrypt_returns_original_secret(cipher):
    assert cipher.decrypt(cipher.encrypt(SECRET)) == SECRET


def test_payload_is_nonce_hex_colon_cipher_hex(cipher):
    nonce_hex, sep, cipher_hex = cipher.encrypt(SECRET).partition(":")
    assert sep == ":"
    assert len(bytes.fromhex(nonce_hex)) == NONCE_LENGTH
    assert bytes.fromhex(cipher_hex)


def test_same_secret_encrypts_differently_each_time(cipher):
    assert cipher.encrypt(SECRET) != cipher.encrypt(SECRET)


def test_wrong_key_fails_instead_of_returning_garbage(cipher):
    payload = cipher.encrypt(SECRET)
    with pytest.raises(DecryptionFailed):
        CredentialCipher(OTHER_KEY).decrypt(payload)


def test_tampered_ciphertext_fails(cipher):
    nonce_hex, _, cipher_hex = cipher.encrypt(SECRET).partition(":")
    flipped = format(int(cipher_hex[0], 16) ^ 0x1, "x") + cipher_hex[1:]
    with pytest.raises(DecryptionFailed):
        cipher.decrypt(f"{nonce_hex}:{flipped}")


@pytest.mark.parametrize(
    "payload",
    [
        "",
        "no-separator",
        "not-hex:also-not-hex",
        "00ff:00ff",  # nonce and ciphertext both too short
        "00" * NONCE_LENGTH + ":",  # no ciphertext at all
    ],
)
def test_malformed_payload_fails(cipher, payload):
    with pytest.raises(DecryptionFailed):
        cipher.decrypt(payload)


def test_truncated_payload_fails(cipher):
    payload = cipher.encrypt(SECRET)
    with pytest.raises(DecryptionFailed):
        cipher.decrypt(payload[:-4])


@pytest.mark.parametrize("key", ["", "short", "k" * 31, "k" * 33])
def test_key_must_be_32_bytes(key):
    with pytest.raises(ValueError):
        CredentialCipher(key)


def test_bytes_key_accepted():
    c = CredentialCipher(b"\x01" * 32)
    assert c.decrypt(c.encrypt("plain string secret")) == "plain string secret"


def test_canonical_json_is_key_order_independent():
    assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1}) == b'{"a":2,"b":1}'
