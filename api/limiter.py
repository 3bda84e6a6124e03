"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in route modules that
apply per-route limits with @limiter.limit(), currently POST /auth/login.

One shared instance means every route shares the same in-memory counter
store; a limiter per module would keep isolated counters that never trip.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Limit string for the login route, read from settings at request time."""
    return get_settings().login_rate_limit
