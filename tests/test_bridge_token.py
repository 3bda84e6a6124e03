"""Unit tests for bridge/token.py -- token-kind backend bridge.

The bridge runs against real vault, cache and audit stores; only the HTTP
session is a MagicMock returning real requests.Response objects.

Covers:
- cache miss -> one login, audited success, triple cached without expiry
- cache hits -> no backend call, one audit row per hit
- incomplete or failed login -> BackendLoginFailed, audited fail, nothing cached
- missing or undecryptable stored credential -> no login and no audit row
- audit write failure aborts before the credential is cached
"""

from unittest.mock import MagicMock

import pytest
import requests

from audit.store import AuditLog
from bridge.base import AUDIT_PATH
from bridge.token import CLIENT_HEADER, TokenBridge
from cache.store import CredentialCache
from core.errors import AuditWriteFailed, BackendLoginFailed, DecryptionFailed, NoStoredCredential
from core.models import BackendKind, TokenCredential
from core.services import TOKEN_LOGIN_PATH, ServiceConfig
from vault.crypto import CredentialCipher
from vault.store import CredentialVault, _credentials

JELLYFIN = ServiceConfig(
    name="jellyfin",
    kind=BackendKind.token,
    base_url="http://jellyfin.internal:8096",
    public_url="https://jellyfin.example.test",
    login_path=TOKEN_LOGIN_PATH,
    bridge_path="/sso-bridge.html",
    client_header='MediaBrowser Client="homegate"',
)

AUTH_BODY = {"AccessToken": "tok-123", "ServerId": "srv-9", "User": {"Id": "jf-user-1", "Name": "alice"}}


@pytest.fixture
def stores():
    vault = CredentialVault(CredentialCipher("t" * 32), "sqlite:///:memory:")
    cache = CredentialCache(":memory:")
    audit = AuditLog("sqlite:///:memory:")
    vault.set("1", "jellyfin", {"username": "alice", "password": "pw"})
    yield vault, cache, audit
    vault.close()
    cache.close()
    audit.close()


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def bridge(stores, http):
    vault, cache, audit = stores
    return TokenBridge(JELLYFIN, vault, cache, audit, http=http, timeout=5)


def test_cache_miss_logs_in_and_caches(bridge, http, stores, backend_response):
    _, cache, audit = stores
    http.post.return_value = backend_response(200, AUTH_BODY)

    credential = bridge.resolve_credential("1")

    assert credential == TokenCredential(access_token="tok-123", server_id="srv-9", user_id="jf-user-1")
    http.post.assert_called_once()
    args, kwargs = http.post.call_args
    assert args[0] == "http://jellyfin.internal:8096/Users/AuthenticateByName"
    assert kwargs["json"] == {"Username": "alice", "Pw": "pw"}
    assert kwargs["headers"][CLIENT_HEADER] == 'MediaBrowser Client="homegate"'
    assert kwargs["timeout"] == 5

    assert cache.get("jellyfin:token:1") is not None
    assert cache.ttl("jellyfin:token:1") is None  # default_ttl 0: never expires

    [entry] = audit.query()
    assert (entry.user_id, entry.service, entry.status) == ("1", "jellyfin", "success")
    assert entry.reason == "New token generated"
    assert entry.path == AUDIT_PATH


def test_cache_hits_skip_backend_and_audit_each_time(bridge, http, stores):
    _, cache, audit = stores
    cache.set("jellyfin:token:1", TokenCredential("cached-tok", "srv-9", "jf-user-1").to_cache())

    first = bridge.resolve_credential("1")
    second = bridge.resolve_credential("1")

    assert first.access_token == second.access_token == "cached-tok"
    http.post.assert_not_called()
    entries = audit.query()
    assert len(entries) == 2
    assert all(e.status == "success" and e.reason == "Using cached token" for e in entries)


@pytest.mark.parametrize(
    "body",
    [
        {"ServerId": "srv-9", "User": {"Id": "u"}},
        {"AccessToken": "tok", "User": {"Id": "u"}},
        {"AccessToken": "tok", "ServerId": "srv-9", "User": {}},
        {"AccessToken": "tok", "ServerId": "srv-9"},
    ],
)
def test_incomplete_response_is_a_failure(bridge, http, stores, backend_response, body):
    _, cache, audit = stores
    http.post.return_value = backend_response(200, body)

    with pytest.raises(BackendLoginFailed) as exc_info:
        bridge.resolve_credential("1")

    assert exc_info.value.status_code == 502
    assert cache.get("jellyfin:token:1") is None
    [entry] = audit.query()
    assert entry.status == "fail"
    assert entry.reason == "Authentication failed: No access token, server id or user id received from jellyfin"


def test_http_error_reason_includes_status(bridge, http, stores, backend_response):
    _, _, audit = stores
    http.post.return_value = backend_response(401, {"message": "Invalid username or password"})

    with pytest.raises(BackendLoginFailed) as exc_info:
        bridge.resolve_credential("1")

    assert "HTTP 401" in exc_info.value.message
    assert audit.query()[0].reason == "Authentication failed: HTTP 401: Invalid username or password"


def test_timeout_is_a_failure(bridge, http, stores):
    _, _, audit = stores
    http.post.side_effect = requests.Timeout("read timed out")

    with pytest.raises(BackendLoginFailed):
        bridge.resolve_credential("1")

    assert audit.query(status="fail")[0].reason == "Authentication failed: Backend did not respond in time"


def test_no_stored_credential_means_no_login_and_no_audit(bridge, http, stores):
    _, _, audit = stores
    with pytest.raises(NoStoredCredential):
        bridge.resolve_credential("2")
    http.post.assert_not_called()
    assert audit.query() == []


def test_undecryptable_credential_propagates(bridge, http, stores):
    vault, _, audit = stores
    with vault.engine.connect() as conn:
        conn.execute(_credentials.update().values(encrypted_payload="deadbeef:00"))
        conn.commit()

    with pytest.raises(DecryptionFailed):
        bridge.resolve_credential("1")
    http.post.assert_not_called()
    assert audit.query() == []


def test_secret_without_password_is_an_audited_failure(bridge, http, stores):
    vault, _, audit = stores
    vault.set("1", "jellyfin", {"username": "alice"})

    with pytest.raises(BackendLoginFailed):
        bridge.resolve_credential("1")
    http.post.assert_not_called()
    assert audit.query()[0].status == "fail"


def test_unreadable_cache_entry_is_replaced(bridge, http, stores, backend_response):
    _, cache, _ = stores
    cache.set("jellyfin:token:1", "{not json")
    http.post.return_value = backend_response(200, AUTH_BODY)

    assert bridge.resolve_credential("1").access_token == "tok-123"
    http.post.assert_called_once()


def test_audit_failure_aborts_before_caching(stores, http, backend_response):
    vault, cache, _ = stores
    audit = MagicMock()
    audit.record.side_effect = AuditWriteFailed()
    bridge = TokenBridge(JELLYFIN, vault, cache, audit, http=http)
    http.post.return_value = backend_response(200, AUTH_BODY)

    with pytest.raises(AuditWriteFailed):
        bridge.resolve_credential("1")
    assert cache.get("jellyfin:token:1") is None


def test_invalidate_forces_fresh_login(bridge, http, stores, backend_response):
    http.post.return_value = backend_response(200, AUTH_BODY)
    bridge.resolve_credential("1")

    assert bridge.invalidate("1") is True
    assert bridge.invalidate("1") is False
    bridge.resolve_credential("1")
    assert http.post.call_count == 2
