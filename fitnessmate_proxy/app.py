import logging
import time
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from .classifier import classify, loads_strict
from .config import Settings, setup_logging
from .cors import install_ingress_filter
from .normalizer import normalize_payload
from .upstream import UpstreamCaller, UpstreamMisconfigured, UpstreamUnavailable

logger = logging.getLogger(__name__)


def _check_client_token(request: Request, expected: str) -> None:
    # only enforced when PROXY_CLIENT_TOKEN is set
    auth = request.headers.get("authorization", "")
    if not auth.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    given = auth.split(" ", 1)[1].strip()
    if given != expected:
        raise HTTPException(status_code=403, detail="Bad token")


async def _read_json_body(request: Request, max_bytes: int) -> Dict[str, Any]:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise HTTPException(status_code=413, detail="Request body too large")
    body_bytes = await request.body()
    if len(body_bytes) > max_bytes:
        raise HTTPException(status_code=413, detail="Request body too large")
    if not body_bytes.strip():
        return {}
    try:
        body_json = loads_strict(body_bytes.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if body_json is None:
        return {}
    if not isinstance(body_json, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")
    return body_json


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    caller = UpstreamCaller(settings, transport=transport)

    app = FastAPI(title="fitnessmate-proxy", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings
    install_ingress_filter(app, settings)

    @app.get("/_health")
    async def health() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.post("/api/myapi")
    async def relay_chat(request: Request) -> Response:
        t0 = time.perf_counter()
        try:
            if settings.client_token:
                _check_client_token(request, settings.client_token)
            body = await _read_json_body(request, settings.max_body_bytes)
            payload = normalize_payload(body, settings.default_model)
            reply = await caller.send(payload)
            response = classify(reply.status_code, reply.text, settings)
            logger.info(
                "relay done status=%s upstream=%s attempts=%s dur_ms=%s",
                response.status_code,
                reply.status_code,
                reply.attempts,
                int((time.perf_counter() - t0) * 1000),
            )
            return response
        except HTTPException as e:
            logger.warning("Rejected request: %s %s", e.status_code, e.detail)
            return JSONResponse(status_code=e.status_code, content={"error": e.detail})
        except UpstreamMisconfigured as e:
            return JSONResponse(status_code=500, content={"error": str(e)})
        except UpstreamUnavailable as e:
            return JSONResponse(
                status_code=502,
                content={
                    "error": "upstream_unavailable",
                    "detail": e.detail,
                    "attempts": e.attempts,
                    "status": e.status_code,
                },
            )
        except Exception as e:
            logger.exception("Server error")
            return JSONResponse(status_code=502, content={"error": str(e) or type(e).__name__})

    return app


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    app = create_app(settings)
    logger.info("Listening on %s", settings.port)
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
