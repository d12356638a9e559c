"""
Application lifespan and graceful shutdown.
"""
from __future__ import annotations

import pytest
import uvicorn
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from ollama_relay import main
from ollama_relay.main import RelayServer, announce_shutdown, app
from ollama_relay.services.connection_registry import ConnectionRegistry
from tests.conftest import FakeWebSocket

WS_PATH = "/api/v1/ws/chat"


def test_lifespan_shutdown_notifies_and_closes_registered_clients() -> None:
    with TestClient(app):
        socket = FakeWebSocket()
        app.state.registry.register(socket)

    assert socket.sent == [{"type": "server_shutdown", "message": "Server is shutting down"}]
    assert socket.closed_with == 1001


def test_connected_client_receives_shutdown_notice_and_1001(client: TestClient) -> None:
    with client.websocket_connect(WS_PATH) as websocket:
        assert websocket.receive_json()["type"] == "welcome"
        assert websocket.receive_json()["type"] == "client_list"

        client.portal.call(announce_shutdown, app.state.registry)

        assert websocket.receive_json() == {
            "type": "server_shutdown",
            "message": "Server is shutting down",
        }
        with pytest.raises(WebSocketDisconnect) as exc_info:
            websocket.receive_json()
        assert exc_info.value.code == 1001


@pytest.mark.asyncio
async def test_announce_shutdown_with_no_clients_is_noop() -> None:
    await announce_shutdown(ConnectionRegistry())


@pytest.mark.asyncio
async def test_relay_server_notifies_clients_before_uvicorn_teardown(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    order: list[str] = []
    registry = ConnectionRegistry()

    async def record_announce(target: ConnectionRegistry) -> None:
        assert target is registry
        order.append("announce")

    async def record_uvicorn_shutdown(self, sockets=None) -> None:  # noqa: ANN001
        order.append("uvicorn")

    monkeypatch.setattr(main, "announce_shutdown", record_announce)
    monkeypatch.setattr(uvicorn.Server, "shutdown", record_uvicorn_shutdown)
    monkeypatch.setattr(app.state, "registry", registry, raising=False)

    await RelayServer(uvicorn.Config(app)).shutdown()

    assert order == ["announce", "uvicorn"]
