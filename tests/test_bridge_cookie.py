"""Unit tests for bridge/cookie.py -- cookie-kind backend bridge.

Covers:
- 302 with the named cookie -> success, raw cookie cached for 24h
- any other status (including 200) -> audited failure
- 302 without the named cookie -> audited failure
- form-encoded login with redirects disabled
- Set-Cookie header selection when several cookies are present, raw or folded
"""

from unittest.mock import MagicMock

import pytest

from audit.store import AuditLog
from bridge.cookie import COOKIE_TTL, CookieBridge, set_cookie_headers
from cache.store import CredentialCache
from core.errors import BackendLoginFailed
from core.models import BackendKind, CookieCredential
from core.services import COOKIE_LOGIN_PATH, ServiceConfig
from vault.crypto import CredentialCipher
from vault.store import CredentialVault

RADARR = ServiceConfig(
    name="radarr",
    kind=BackendKind.cookie,
    base_url="http://radarr.internal:7878/",
    public_url="https://radarr.example.test",
    login_path=COOKIE_LOGIN_PATH,
    cookie_name="RadarrAuth",
)

RADARR_COOKIE = "RadarrAuth=abc123; expires=Sat, 01 Jan 2033 00:00:00 GMT; path=/; HttpOnly"


@pytest.fixture
def stores():
    vault = CredentialVault(CredentialCipher("c" * 32), "sqlite:///:memory:")
    cache = CredentialCache(":memory:")
    audit = AuditLog("sqlite:///:memory:")
    vault.set("5", "radarr", {"username": "bob", "password": "pw"})
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
    return CookieBridge(RADARR, vault, cache, audit, http=http)


def test_302_with_cookie_succeeds_and_caches_for_a_day(bridge, http, stores, backend_response):
    _, cache, audit = stores
    http.post.return_value = backend_response(302, headers={"Set-Cookie": RADARR_COOKIE, "Location": "/"})

    credential = bridge.resolve_credential("5")

    assert credential == CookieCredential(raw_cookie=RADARR_COOKIE)
    assert credential.name == "RadarrAuth"
    assert credential.value == "abc123"
    assert cache.get("radarr:cookie:5") == RADARR_COOKIE
    assert cache.ttl("radarr:cookie:5") == pytest.approx(COOKIE_TTL, abs=5)
    [entry] = audit.query()
    assert (entry.status, entry.reason) == ("success", "New cookie generated")


def test_login_request_is_form_encoded_without_redirects(bridge, http, backend_response):
    http.post.return_value = backend_response(302, headers={"Set-Cookie": RADARR_COOKIE})
    bridge.resolve_credential("5")

    args, kwargs = http.post.call_args
    assert args[0] == "http://radarr.internal:7878/login"
    assert kwargs["data"] == {"username": "bob", "password": "pw", "rememberMe": "on"}
    assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
    assert kwargs["allow_redirects"] is False


@pytest.mark.parametrize("status", [200, 301, 303, 401, 500])
def test_non_302_status_is_a_failure(bridge, http, stores, backend_response, status):
    _, cache, audit = stores
    # A cookie on a non-302 response does not rescue it.
    http.post.return_value = backend_response(status, headers={"Set-Cookie": RADARR_COOKIE})

    with pytest.raises(BackendLoginFailed):
        bridge.resolve_credential("5")

    assert cache.get("radarr:cookie:5") is None
    [entry] = audit.query()
    assert entry.status == "fail"
    assert entry.reason == f"Authentication failed: Unexpected status {status} from radarr login"


def test_302_without_named_cookie_is_a_failure(bridge, http, stores, backend_response):
    _, _, audit = stores
    http.post.return_value = backend_response(302, headers={"Set-Cookie": "OtherAuth=zzz; path=/"})

    with pytest.raises(BackendLoginFailed) as exc_info:
        bridge.resolve_credential("5")

    assert exc_info.value.message == "Failed to authenticate with radarr: No RadarrAuth cookie received from radarr"
    assert audit.query()[0].reason == "Authentication failed: No RadarrAuth cookie received from radarr"


def test_cached_cookie_skips_login(bridge, http, stores):
    _, cache, audit = stores
    cache.set("radarr:cookie:5", RADARR_COOKIE, ttl=COOKIE_TTL)

    assert bridge.resolve_credential("5").raw_cookie == RADARR_COOKIE
    http.post.assert_not_called()
    assert audit.query()[0].reason == "Using cached cookie"


def test_set_cookie_headers_reads_unfolded_raw_headers(backend_response):
    resp = backend_response(302)
    resp.raw = MagicMock()
    resp.raw.headers.getlist.return_value = ["Session=1; path=/", RADARR_COOKIE]

    assert set_cookie_headers(resp) == ["Session=1; path=/", RADARR_COOKIE]


def test_set_cookie_headers_falls_back_to_folded_header(backend_response):
    resp = backend_response(302, headers={"Set-Cookie": RADARR_COOKIE})
    assert set_cookie_headers(resp) == [RADARR_COOKIE]
    assert set_cookie_headers(backend_response(302)) == []


def test_cookie_found_among_several(bridge, http, backend_response):
    resp = backend_response(302)
    resp.raw = MagicMock()
    resp.raw.headers.getlist.return_value = ["Session=1; path=/", RADARR_COOKIE]
    http.post.return_value = resp

    assert bridge.resolve_credential("5").raw_cookie == RADARR_COOKIE


def test_folded_header_is_split_between_cookies(backend_response):
    folded = f"Session=1; path=/, {RADARR_COOKIE}"
    resp = backend_response(302, headers={"Set-Cookie": folded})

    assert set_cookie_headers(resp) == ["Session=1; path=/", RADARR_COOKIE]


def test_named_cookie_found_after_another_in_folded_header(bridge, http, backend_response):
    http.post.return_value = backend_response(302, headers={"Set-Cookie": f"Session=1; path=/, {RADARR_COOKIE}"})

    assert bridge.resolve_credential("5").raw_cookie == RADARR_COOKIE
