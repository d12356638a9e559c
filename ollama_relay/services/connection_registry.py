"""
In-memory registry of connected WebSocket clients.

Created once in the application lifespan and injected into handlers.
Entries are added on connect and removed on disconnect; nothing survives
a restart. All access happens on the event loop, so no locking is needed.
"""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket
from pydantic import BaseModel
from starlette.websockets import WebSocketDisconnect, WebSocketState

from ollama_relay.schemas.ws import ClientSummary

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_client_name(client_id: int) -> str:
    return f"Client-{client_id}"


def log_client_activity(client_id: int, activity: str, **data: Any) -> None:
    """Single log line per client event, e.g. ``Client 3: CONNECTED {...}``."""
    if data:
        logger.info("Client %s: %s %s", client_id, activity, data)
    else:
        logger.info("Client %s: %s", client_id, activity)


@dataclass
class ClientInfo:
    """A connected client."""

    id: int
    websocket: WebSocket
    name: str
    ip: str | None = None
    user_agent: str | None = None
    connected_at: datetime = field(default_factory=_utcnow)
    last_activity: datetime = field(default_factory=_utcnow)

    def summary(self, viewer_id: int | None = None) -> ClientSummary:
        return ClientSummary(
            id=self.id,
            name=self.name,
            connected=self.connected_at,
            last_activity=self.last_activity,
            is_you=(self.id == viewer_id) if viewer_id is not None else None,
        )


def _to_payload(message: BaseModel | dict) -> dict:
    if isinstance(message, BaseModel):
        return message.model_dump(mode="json", by_alias=True, exclude_none=True)
    return message


class ConnectionRegistry:
    """Tracks connected clients and fans messages out to them."""

    def __init__(self) -> None:
        self._clients: dict[int, ClientInfo] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients

    def clients(self) -> list[ClientInfo]:
        return list(self._clients.values())

    def get(self, client_id: int) -> ClientInfo | None:
        return self._clients.get(client_id)

    def register(
        self,
        websocket: WebSocket,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> ClientInfo:
        """Assign the next id to a freshly accepted socket."""
        client_id = next(self._ids)
        client = ClientInfo(
            id=client_id,
            websocket=websocket,
            name=default_client_name(client_id),
            ip=ip,
            user_agent=user_agent,
        )
        self._clients[client_id] = client
        return client

    def unregister(self, client_id: int) -> ClientInfo | None:
        return self._clients.pop(client_id, None)

    def touch(self, client_id: int) -> None:
        client = self._clients.get(client_id)
        if client is not None:
            client.last_activity = _utcnow()

    def rename(self, client_id: int, new_name: str | None) -> tuple[str, str]:
        """
        Rename a client. A blank name resets it to the default.

        Returns:
            (old_name, new_name)

        Raises:
            KeyError: If the client is not registered.
        """
        client = self._clients[client_id]
        old_name = client.name
        client.name = (new_name or "").strip() or default_client_name(client_id)
        return old_name, client.name

    def snapshot(self, viewer_id: int | None = None) -> list[ClientSummary]:
        return [client.summary(viewer_id) for client in self._clients.values()]

    async def send_to(self, client_id: int, message: BaseModel | dict) -> bool:
        """Send to one client. Returns False if it is gone or the send failed."""
        client = self._clients.get(client_id)
        if client is None:
            return False
        return await self._safe_send(client, _to_payload(message))

    async def broadcast(
        self,
        message: BaseModel | dict,
        exclude: int | None = None,
    ) -> int:
        """
        Send a message to every connected client except ``exclude``.

        A failing socket is logged and skipped.

        Returns:
            Number of clients that received the message.
        """
        payload = _to_payload(message)
        delivered = 0
        for client in self.clients():
            if client.id == exclude:
                continue
            if await self._safe_send(client, payload):
                delivered += 1
        return delivered

    async def close_all(self, code: int = 1001, reason: str = "") -> None:
        for client in self.clients():
            if client.websocket.application_state != WebSocketState.CONNECTED:
                continue
            try:
                await client.websocket.close(code=code, reason=reason)
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                logger.debug("Close failed for client %s: %s", client.id, exc)

    async def _safe_send(self, client: ClientInfo, payload: dict) -> bool:
        websocket = client.websocket
        if (
            websocket.client_state != WebSocketState.CONNECTED
            or websocket.application_state != WebSocketState.CONNECTED
        ):
            return False
        try:
            await websocket.send_json(payload)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            logger.warning("Send to client %s failed: %s", client.id, exc)
            return False
        return True
