import logging
from typing import Dict, Optional

from fastapi import FastAPI, Request, Response

from .config import Settings

logger = logging.getLogger(__name__)

ALLOW_METHODS = "GET,POST,OPTIONS"
ECHO_ALLOW_METHODS = "GET,POST,PUT,DELETE,OPTIONS"
ALLOW_HEADERS = "Content-Type, Authorization, X-Title, HTTP-Referer, X-Requested-With"
EXPOSE_HEADERS = "Content-Length, Content-Type"


def cors_headers(
    settings: Settings,
    origin: Optional[str],
    requested_headers: Optional[str] = None,
) -> Dict[str, str]:
    """
    CORS response headers for one request.

    - `allowlist`: a listed origin is echoed with credentials, anything else gets `*`
    - `wildcard`: always `*`, never credentials
    - `echo`: any origin is echoed with credentials and the preflight's
      requested headers are allowed as-is
    """
    headers: Dict[str, str] = {}
    mode = settings.cors_mode

    echo_origin = False
    if origin:
        if mode == "echo":
            echo_origin = True
        elif mode == "allowlist":
            echo_origin = origin in settings.allowed_origins

    if echo_origin:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Credentials"] = "true"
        headers["Vary"] = "Origin"
    else:
        headers["Access-Control-Allow-Origin"] = "*"

    if mode == "echo":
        headers["Access-Control-Allow-Methods"] = ECHO_ALLOW_METHODS
        headers["Access-Control-Allow-Headers"] = requested_headers or ALLOW_HEADERS
    else:
        headers["Access-Control-Allow-Methods"] = ALLOW_METHODS
        headers["Access-Control-Allow-Headers"] = ALLOW_HEADERS
    headers["Access-Control-Expose-Headers"] = EXPOSE_HEADERS

    if settings.close_connections:
        headers["Connection"] = "close"
        headers["Keep-Alive"] = "timeout=5, max=0"
    return headers


def install_ingress_filter(app: FastAPI, settings: Settings) -> None:
    """Apply CORS headers to every response and answer preflights with 204."""

    @app.middleware("http")
    async def ingress_filter(request: Request, call_next):
        headers = cors_headers(
            settings,
            request.headers.get("origin"),
            request.headers.get("access-control-request-headers"),
        )
        if request.method == "OPTIONS":
            logger.debug("preflight %s origin=%s", request.url.path, request.headers.get("origin"))
            return Response(status_code=204, headers=headers)

        response = await call_next(request)
        response.headers.update(headers)
        return response
