"""Unit tests for core/status.py -- public URL reachability checks."""

from unittest.mock import MagicMock

import pytest
import requests

from core.status import STATUS_TIMEOUT, check_service, check_services


def _session(status: int = 200, body: str = "<html>ok</html>") -> MagicMock:
    resp = requests.Response()
    resp.status_code = status
    resp._content = body.encode("utf-8")
    resp.encoding = "utf-8"
    session = MagicMock()
    session.get.return_value = resp
    return session


def test_200_is_up():
    session = _session()
    assert check_service("https://radarr.example.test", session=session) is True
    session.get.assert_called_once_with("https://radarr.example.test", timeout=STATUS_TIMEOUT)


@pytest.mark.parametrize("status", [301, 404, 500, 502])
def test_non_200_is_down(status):
    assert check_service("https://radarr.example.test", session=_session(status)) is False


@pytest.mark.parametrize(
    "body",
    [
        "<html><center><h1>502 Bad Gateway</h1></center></html>",
        "<html><center><H1>404 Not Found</H1></center></html>",
    ],
)
def test_proxy_error_page_served_with_200_is_down(body):
    assert check_service("https://radarr.example.test", session=_session(200, body)) is False


def test_connection_error_is_down():
    session = MagicMock()
    session.get.side_effect = requests.ConnectionError("refused")
    assert check_service("https://radarr.example.test", session=session) is False


def test_falsy_session_object_is_still_used():
    session = _session()
    session.__bool__.return_value = False

    assert check_service("https://radarr.example.test", session=session) is True
    session.get.assert_called_once()


def test_check_services_maps_names():
    session = _session()
    assert check_services({"radarr": "https://r", "sonarr": "https://s"}, session=session) == {
        "radarr": True,
        "sonarr": True,
    }
    assert check_services({}, session=session) == {}
