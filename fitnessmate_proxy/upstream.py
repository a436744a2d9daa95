import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .config import Settings

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Base class for failures of the outbound chat-completions call."""


class UpstreamMisconfigured(UpstreamError):
    """No API key configured; raised before any network call."""


class UpstreamUnavailable(UpstreamError):
    """Retry budget exhausted on 5xx replies or transport failures."""

    def __init__(self, detail: str, attempts: int, status_code: Optional[int] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.attempts = attempts
        self.status_code = status_code


@dataclass(frozen=True)
class UpstreamReply:
    status_code: int
    text: str
    attempts: int = 1


class UpstreamCaller:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self.settings.user_agent,
        }

    async def _attempt(self, payload: Dict[str, Any]) -> httpx.Response:
        timeout = self.settings.timeout_s
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            transport=self.transport,
        ) as client:
            # wait_for bounds the whole attempt, httpx only bounds each phase
            return await asyncio.wait_for(
                client.post(self.settings.upstream_url, headers=self._headers(), json=payload),
                timeout=timeout,
            )

    async def _backoff(self, attempt: int) -> None:
        delay = self.settings.backoff_ms * attempt / 1000.0
        if delay > 0:
            await asyncio.sleep(delay)

    async def send(self, payload: Dict[str, Any]) -> UpstreamReply:
        """
        POST `payload` upstream and return the raw reply.

        4xx replies are returned as-is. 5xx replies and transport errors are
        retried `retry_budget` times; once the budget is spent
        `UpstreamUnavailable` carries the last failure.
        """
        if not self.settings.has_api_key:
            logger.error("OPENROUTER_API_KEY missing")
            raise UpstreamMisconfigured("Server misconfigured: OPENROUTER_API_KEY missing")

        max_attempts = self.settings.retry_budget + 1
        last_detail = ""
        last_status: Optional[int] = None
        t0 = time.perf_counter()

        for attempt in range(1, max_attempts + 1):
            try:
                resp = await self._attempt(payload)
            except (httpx.RequestError, asyncio.TimeoutError) as e:
                last_status = None
                last_detail = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
                logger.warning("Upstream attempt %s/%s failed: %s", attempt, max_attempts, last_detail)
            else:
                text = resp.text
                elapsed_ms = int((time.perf_counter() - t0) * 1000)
                logger.info("Upstream status: %s elapsed: %sms attempt: %s", resp.status_code, elapsed_ms, attempt)
                logger.debug("Upstream body preview: %s", text[: self.settings.preview_chars])
                if resp.status_code < 500:
                    return UpstreamReply(status_code=resp.status_code, text=text, attempts=attempt)
                last_status = resp.status_code
                last_detail = f"Upstream {resp.status_code}: {text[:200]}"
                logger.warning("Upstream %s on attempt %s/%s", resp.status_code, attempt, max_attempts)

            if attempt < max_attempts:
                await self._backoff(attempt)

        logger.error("Upstream gave up after %s attempts: %s", max_attempts, last_detail)
        raise UpstreamUnavailable(last_detail, attempts=max_attempts, status_code=last_status)
