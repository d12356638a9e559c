"""
Pytest fixtures for relay tests.
"""
from __future__ import annotations

import asyncio
from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from ollama_relay.core.dependencies import get_ollama_client
from ollama_relay.main import app
from ollama_relay.services.ndjson_reassembler import is_done


class FakeOllamaClient:
    """
    Stand-in for OllamaClient: replays canned records, then optionally
    raises or blocks to simulate a long generation.
    """

    url = "http://ollama.test/api/generate"
    default_model = "test-model"

    def __init__(self) -> None:
        self.records: list[dict] = []
        self.error: Exception | None = None
        self.hang = False
        self.delay = 0.0
        self.calls: list[dict[str, Any]] = []

    async def stream_generate(self, prompt: str, model: str | None = None, **options: Any):
        self.calls.append({"prompt": prompt, "model": model, "options": options})
        for record in self.records:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield record
            if is_done(record):
                return
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.sleep(30)


class FakeWebSocket:
    """Records JSON frames; optionally fails every send."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.closed_with: int | None = None
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self._fail = fail

    async def send_json(self, data: dict) -> None:
        if self._fail:
            raise RuntimeError("socket is gone")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = code
        self.application_state = WebSocketState.DISCONNECTED


@pytest.fixture
def fake_ollama() -> FakeOllamaClient:
    return FakeOllamaClient()


@pytest.fixture
def client(fake_ollama: FakeOllamaClient) -> Generator[TestClient, None, None]:
    """
    Test client running the real lifespan, with the upstream replaced.
    """
    app.dependency_overrides[get_ollama_client] = lambda: fake_ollama
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
