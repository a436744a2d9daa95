import json
import math
import logging
from typing import Any

from fastapi.responses import JSONResponse, PlainTextResponse, Response

from .config import Settings

logger = logging.getLogger(__name__)


def looks_like_html(text: str) -> bool:
    return text.strip().startswith("<")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


def _finite_float(raw: str) -> float:
    value = float(raw)
    if math.isinf(value):
        raise ValueError(f"float out of range {raw}")
    return value


def loads_strict(text: str) -> Any:
    """`json.loads` that refuses NaN and Infinity, which JSONResponse cannot render."""
    return json.loads(text, parse_constant=_reject_constant, parse_float=_finite_float)


def _parse_or_raw(text: str) -> Any:
    try:
        return loads_strict(text)
    except ValueError:
        return text


def classify(status_code: int, text: str, settings: Settings) -> Response:
    """
    Turn a raw upstream reply into the response the frontend gets.

    HTML bodies become a 502 whatever the upstream status was. Non-2xx
    statuses are surfaced with the same code. A 2xx body is returned as JSON,
    wrapped as `{"raw": ...}` when it doesn't parse.
    """
    if looks_like_html(text):
        logger.warning("Upstream returned HTML (status %s)", status_code)
        return JSONResponse(
            status_code=502,
            content={
                "error": "upstream_returned_html",
                "status": status_code,
                "preview": text[: settings.preview_chars],
            },
        )

    if not 200 <= status_code < 300:
        logger.warning("Upstream error status %s passed through", status_code)
        if settings.error_passthrough == "raw-text":
            return PlainTextResponse(text or f"Upstream returned status {status_code}", status_code=status_code)
        return JSONResponse(
            status_code=status_code,
            content={"error": "upstream_error", "status": status_code, "body": _parse_or_raw(text)},
        )

    if not text:
        return JSONResponse(status_code=200, content=None)
    try:
        data = loads_strict(text)
    except ValueError:
        logger.warning("Upstream 2xx body is not JSON, wrapping as raw")
        data = {"raw": text}
    return JSONResponse(status_code=200, content=data)
