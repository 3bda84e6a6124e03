"""
status.py -- Reachability checks for the backend services' public URLs.

A service counts as up only when its public URL answers HTTP 200 and the body
is not one of the reverse proxy's stock error pages (nginx serves its
"404 Not Found" / "502 Bad Gateway" pages with a 200 in some setups).
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import requests

logger = logging.getLogger("homegate.status")

STATUS_TIMEOUT = 10

_ERROR_PAGE_MARKERS = ("<h1>404 not found</h1>", "<h1>502 bad gateway</h1>")

# Module-level session shared across checks for connection pooling.
_session = requests.Session()
_session.max_redirects = 3


def check_service(url: str, session: Optional[requests.Session] = None) -> bool:
    """Return True if url looks healthy."""
    http = session if session is not None else _session
    try:
        resp = http.get(url, timeout=STATUS_TIMEOUT)
    except requests.RequestException as e:
        logger.warning("Status check failed for %s: %s", url, e)
        return False
    if resp.status_code != 200:
        return False
    body = resp.text.lower() if isinstance(resp.text, str) else ""
    return not any(marker in body for marker in _ERROR_PAGE_MARKERS)


def check_services(urls: dict[str, str], session: Optional[requests.Session] = None) -> dict[str, bool]:
    """Check every {name: url} concurrently and return {name: is_up}."""
    if not urls:
        return {}
    with ThreadPoolExecutor(max_workers=min(8, len(urls))) as pool:
        results = pool.map(lambda item: (item[0], check_service(item[1], session)), urls.items())
        return dict(results)
