"""
asgi.py -- Application assembly for homegate.

This is the ONLY file that imports from both api/ and gateway/. It joins the
two independent layers into a single ASGI app without coupling them to each
other. api/main.py knows nothing about gateway/; gateway/routes.py knows
nothing about api/.

Run with:  uvicorn asgi:app --proxy-headers
"""

from api.main import app
from gateway.routes import router as gateway_router

# Registered last: the front door's /{service} pattern would otherwise
# shadow single-segment API paths.
app.include_router(gateway_router, tags=["Gateway"])
