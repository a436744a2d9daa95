from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from fitnessmate_proxy.app import create_app
from fitnessmate_proxy.config import Settings


class FakeUpstream:
    """httpx mock transport that replays scripted replies and records requests."""

    def __init__(self, replies: List[Any]) -> None:
        self.replies = list(replies)
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    @property
    def calls(self) -> int:
        return len(self.requests)

    def sent_json(self, idx: int = 0) -> Dict[str, Any]:
        return json.loads(self.requests[idx].content.decode("utf-8"))

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    def _make(**overrides: Any) -> Settings:
        base: Dict[str, Any] = {
            "api_key": "sk-test",
            "upstream_url": "https://upstream.test/api/v1/chat/completions",
            "backoff_ms": 0,
            "timeout_s": 5.0,
        }
        base.update(overrides)
        return Settings(**base)

    return _make


@pytest.fixture
def make_client(make_settings) -> Callable[..., TestClient]:
    def _make(upstream: Optional[FakeUpstream] = None, **overrides: Any) -> TestClient:
        settings = make_settings(**overrides)
        transport = upstream.transport() if upstream is not None else None
        return TestClient(create_app(settings, transport=transport))

    return _make


@pytest.fixture
def fake_upstream() -> Callable[..., FakeUpstream]:
    def _make(*replies: Any) -> FakeUpstream:
        return FakeUpstream(list(replies))

    return _make
