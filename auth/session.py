"""
auth/session.py -- Read-only view over the gateway session.

Starlette's SessionMiddleware keeps a signed cookie session on request.session.
Login writes the user id and the session token from UserStore.create_session()
into it; everything else reads them through SessionContext so no core code
touches the session dict directly.

The cookie alone proves nothing: auth/dependencies.py also checks that the
token still has a row in the session registry.
"""

from __future__ import annotations

from collections.abc import MutableMapping
from typing import Any

SESSION_USER_KEY = "user_id"
SESSION_TOKEN_KEY = "sid"


class SessionContext:
    def __init__(self, session: MutableMapping[str, Any]) -> None:
        self._session = session

    def current_user_id(self) -> str | None:
        value = self._session.get(SESSION_USER_KEY)
        if value is None or value == "":
            return None
        return str(value)

    def current_token(self) -> str | None:
        value = self._session.get(SESSION_TOKEN_KEY)
        return value if isinstance(value, str) and value else None

    def is_authenticated(self) -> bool:
        return self.current_user_id() is not None and self.current_token() is not None


def start_session(session: MutableMapping[str, Any], user_id: int | str, token: str) -> None:
    """Bind a fresh session to user_id, dropping whatever was there before."""
    session.clear()
    session[SESSION_USER_KEY] = str(user_id)
    session[SESSION_TOKEN_KEY] = token


def end_session(session: MutableMapping[str, Any]) -> None:
    session.clear()
