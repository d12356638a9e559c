"""
WebSocket protocol schemas for the activity endpoint.

Client messages form a closed union discriminated on ``type`` and are
decoded once at the boundary with ``parse_client_message``. Server
messages are plain models serialized with ``model_dump(mode="json")``.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from ollama_relay.core.config import settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Client → Server ---

class ChatMessage(BaseModel):
    """Prompt to forward upstream."""

    type: Literal["chat"] = "chat"
    prompt: str = Field(min_length=1, max_length=settings.CHAT_MAX_PROMPT_LENGTH)
    model: str | None = None


class SetNameMessage(BaseModel):
    """Rename the sender; empty resets to the default name."""

    type: Literal["set_name"]
    name: str | None = Field(None, max_length=settings.CLIENT_NAME_MAX_LENGTH)


class GetClientsMessage(BaseModel):
    type: Literal["get_clients"]


class BroadcastMessage(BaseModel):
    """Chat line relayed to every other client."""

    type: Literal["broadcast"]
    message: str = Field(min_length=1, max_length=settings.BROADCAST_MAX_LENGTH)


class CancelMessage(BaseModel):
    """Stop the generation currently streaming to the sender."""

    type: Literal["cancel"]


class PingMessage(BaseModel):
    """Keep-alive ping from client."""

    type: Literal["ping"]


ClientMessage = Annotated[
    Union[
        ChatMessage,
        SetNameMessage,
        GetClientsMessage,
        BroadcastMessage,
        CancelMessage,
        PingMessage,
    ],
    Field(discriminator="type"),
]

_client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """
    Decode one inbound frame.

    A JSON object without ``type`` is treated as a chat message.

    Raises:
        json.JSONDecodeError: Frame is not JSON.
        pydantic.ValidationError: JSON does not match any known message.
    """
    data = json.loads(raw)
    if isinstance(data, dict) and "type" not in data:
        data = {**data, "type": "chat"}
    return _client_message_adapter.validate_python(data)


# --- Server → Client ---

class ClientSummary(BaseModel):
    id: int
    name: str
    connected: datetime
    last_activity: datetime
    is_you: bool | None = None


class WsWelcome(BaseModel):
    type: Literal["welcome"] = "welcome"
    client_id: int
    message: str
    connected_clients: int


class WsClientList(BaseModel):
    type: Literal["client_list"] = "client_list"
    clients: list[ClientSummary]


class WsStream(BaseModel):
    """One content token from the upstream."""

    type: Literal["stream"] = "stream"
    content: str


class WsStreamCancelled(BaseModel):
    type: Literal["stream_cancelled"] = "stream_cancelled"
    reason: str


class StreamStats(BaseModel):
    tokens: int
    model: str


class WsStreamEnd(BaseModel):
    """Upstream reported ``done``."""

    type: Literal["stream_end"] = "stream_end"
    message: str = "Generation complete"
    stats: StreamStats | None = None


class WsNameSet(BaseModel):
    type: Literal["name_set"] = "name_set"
    name: str
    message: str


class WsClientNameChanged(BaseModel):
    type: Literal["client_name_changed"] = "client_name_changed"
    client_id: int
    old_name: str
    new_name: str


class WsUserBroadcast(BaseModel):
    type: Literal["user_broadcast"] = "user_broadcast"
    from_name: str
    from_id: int
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)


class WsBroadcastSent(BaseModel):
    type: Literal["broadcast_sent"] = "broadcast_sent"
    message: str = "Message broadcasted to all clients"


class WsClientDisconnected(BaseModel):
    type: Literal["client_disconnected"] = "client_disconnected"
    client_id: int
    name: str
    message: str


class WsServerShutdown(BaseModel):
    type: Literal["server_shutdown"] = "server_shutdown"
    message: str = "Server is shutting down"


class WsError(BaseModel):
    """Error notification from server."""

    type: Literal["error"] = "error"
    code: str
    detail: str


class WsPong(BaseModel):
    """Keep-alive pong response."""

    type: Literal["pong"] = "pong"
