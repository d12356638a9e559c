"""
WebSocket endpoint for relayed generation with presence and broadcast.

Protocol:
  Client → Server:
    {"type": "chat", "prompt": "...", "model": "..."}   generate (``type`` may be omitted)
    {"type": "set_name", "name": "..."}                 rename yourself
    {"type": "get_clients"}                             list connected clients
    {"type": "broadcast", "message": "..."}             message every other client
    {"type": "cancel"}                                  stop the running generation
    {"type": "ping"}                                    keep-alive

  Server → Client:
    {"type": "welcome", "client_id": int, "message": "...", "connected_clients": int}
    {"type": "client_list", "clients": [...]}
    {"type": "stream", "content": "..."}
    {"type": "stream_end", "message": "...", "stats": {"tokens": int, "model": "..."}}
    {"type": "stream_cancelled", "reason": "..."}
    {"type": "name_set", "name": "...", "message": "..."}
    {"type": "client_name_changed", "client_id": int, "old_name": "...", "new_name": "..."}
    {"type": "user_broadcast", "from_name": "...", "from_id": int, "message": "...", "timestamp": "..."}
    {"type": "broadcast_sent", "message": "..."}
    {"type": "client_disconnected", "client_id": int, "name": "...", "message": "..."}
    {"type": "server_shutdown", "message": "..."}
    {"type": "error", "code": "...", "detail": "..."}
    {"type": "pong"}

Close codes:
    1001: server shutting down
    1011: internal server error
"""
import asyncio
import json
import logging
from typing import assert_never

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from ollama_relay.core.dependencies import get_ollama_client, get_registry
from ollama_relay.schemas.ws import (
    BroadcastMessage,
    CancelMessage,
    ChatMessage,
    ClientMessage,
    GetClientsMessage,
    PingMessage,
    SetNameMessage,
    WsBroadcastSent,
    WsClientDisconnected,
    WsClientList,
    WsClientNameChanged,
    WsError,
    WsNameSet,
    WsPong,
    WsStreamCancelled,
    WsUserBroadcast,
    WsWelcome,
    parse_client_message,
)
from ollama_relay.services.connection_registry import (
    ClientInfo,
    ConnectionRegistry,
    log_client_activity,
)
from ollama_relay.services.ollama_client import (
    OllamaClient,
    UpstreamHTTPError,
    UpstreamTransportError,
)
from ollama_relay.services.relay_service import RelayService

logger = logging.getLogger(__name__)

router = APIRouter()

PREVIEW_CHARS = 50


async def _send(websocket: WebSocket, message: BaseModel) -> None:
    await websocket.send_json(message.model_dump(mode="json", exclude_none=True))


async def _decode_message(websocket: WebSocket, raw: str) -> ClientMessage | None:
    """
    Decode one received frame. Protocol errors are answered in-band and
    yield None; the connection stays open.
    """
    try:
        return parse_client_message(raw)
    except json.JSONDecodeError:
        await _send(websocket, WsError(code="invalid_json", detail="Message is not valid JSON."))
    except ValidationError as exc:
        await _send(websocket, WsError(code="invalid_message", detail=_first_error(exc)))
    return None


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid message format"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', 'invalid')}" if location else first.get("msg", "invalid")


async def _broadcast_client_list(registry: ConnectionRegistry) -> None:
    await registry.broadcast(WsClientList(clients=registry.snapshot()))


async def _handle_set_name(
    registry: ConnectionRegistry,
    client: ClientInfo,
    message: SetNameMessage,
) -> None:
    old_name, new_name = registry.rename(client.id, message.name)
    log_client_activity(client.id, "NAME_CHANGED", old_name=old_name, new_name=new_name)

    await _send(client.websocket, WsNameSet(name=new_name, message=f"Name changed to: {new_name}"))
    await registry.broadcast(
        WsClientNameChanged(client_id=client.id, old_name=old_name, new_name=new_name),
        exclude=client.id,
    )
    await _broadcast_client_list(registry)


async def _handle_get_clients(registry: ConnectionRegistry, client: ClientInfo) -> None:
    await _send(client.websocket, WsClientList(clients=registry.snapshot(viewer_id=client.id)))
    log_client_activity(client.id, "REQUESTED_CLIENT_LIST")


async def _handle_broadcast(
    registry: ConnectionRegistry,
    client: ClientInfo,
    message: BroadcastMessage,
) -> None:
    log_client_activity(client.id, "BROADCAST_SENT", message=message.message[:PREVIEW_CHARS])
    await registry.broadcast(
        WsUserBroadcast(from_name=client.name, from_id=client.id, message=message.message),
        exclude=client.id,
    )
    await _send(client.websocket, WsBroadcastSent())


async def _handle_control(
    registry: ConnectionRegistry,
    client: ClientInfo,
    message: SetNameMessage | GetClientsMessage | BroadcastMessage | PingMessage,
) -> None:
    """Messages that never touch the upstream."""
    match message:
        case SetNameMessage():
            await _handle_set_name(registry, client, message)
        case GetClientsMessage():
            await _handle_get_clients(registry, client)
        case BroadcastMessage():
            await _handle_broadcast(registry, client, message)
        case PingMessage():
            await _send(client.websocket, WsPong())
        case _:
            assert_never(message)


async def _stream_chat(service: RelayService, client: ClientInfo, message: ChatMessage) -> None:
    """Forward every RelayService event to the client socket."""
    async for event in service.stream_chat(client.id, message.prompt, model=message.model):
        await _send(client.websocket, event)


async def _cancel_task(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.debug("Task ended with error after cancel", exc_info=True)


async def _handle_while_streaming(
    registry: ConnectionRegistry,
    client: ClientInfo,
    message: ClientMessage | None,
) -> bool:
    """
    Serve one message received during a generation. Returns True when the
    client asked to cancel; a second chat is rejected.
    """
    match message:
        case None:
            return False
        case CancelMessage():
            return True
        case ChatMessage():
            await _send(
                client.websocket,
                WsError(code="generation_in_progress", detail="A generation is already running."),
            )
        case _:
            await _handle_control(registry, client, message)
    return False


async def _run_chat(
    registry: ConnectionRegistry,
    service: RelayService,
    client: ClientInfo,
    message: ChatMessage,
) -> None:
    """
    Stream one generation while still serving the socket.

    Only the pending receive is ever cancelled when the stream finishes; a
    message that was already received is handled to completion here.
    """
    websocket = client.websocket
    stream_task = asyncio.create_task(_stream_chat(service, client, message))
    receive_task: asyncio.Task | None = None

    try:
        while not stream_task.done():
            receive_task = asyncio.create_task(websocket.receive_text())
            done, _ = await asyncio.wait(
                {stream_task, receive_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if receive_task not in done:
                break

            # Disconnect (or a dead socket) while streaming ends the session.
            incoming = await _decode_message(websocket, receive_task.result())
            registry.touch(client.id)
            if await _handle_while_streaming(registry, client, incoming):
                await _cancel_task(stream_task)
                log_client_activity(client.id, "GENERATION_CANCELLED")
                await _send(websocket, WsStreamCancelled(reason="cancelled_by_user"))
                return
    finally:
        if receive_task is not None and not receive_task.done():
            await _cancel_task(receive_task)
        if not stream_task.done():
            await _cancel_task(stream_task)

    exc = stream_task.exception()
    if exc is None:
        return
    if isinstance(exc, WebSocketDisconnect):
        raise exc
    if isinstance(exc, UpstreamHTTPError):
        log_client_activity(client.id, "OLLAMA_ERROR", status=exc.status_code)
        await _send(
            websocket,
            WsError(
                code="upstream_unavailable",
                detail=f"Error connecting to Ollama: {exc.status_code}",
            ),
        )
    elif isinstance(exc, UpstreamTransportError):
        log_client_activity(client.id, "STREAM_ERROR", error=str(exc))
        await _send(websocket, WsError(code="stream_error", detail="Stream error occurred"))
    else:
        log_client_activity(client.id, "SERVER_ERROR", error=str(exc))
        logger.error("Unhandled relay error", exc_info=exc)
        await _send(websocket, WsError(code="internal_error", detail="Internal server error"))


@router.websocket("/ws/chat")
async def websocket_chat(
    websocket: WebSocket,
    registry: ConnectionRegistry = Depends(get_registry),
    ollama: OllamaClient = Depends(get_ollama_client),
):
    """
    Activity WebSocket: streamed generation plus presence and broadcast.
    """
    await websocket.accept()

    client = registry.register(
        websocket,
        ip=websocket.client.host if websocket.client else None,
        user_agent=websocket.headers.get("user-agent"),
    )
    log_client_activity(client.id, "CONNECTED", ip=client.ip, user_agent=client.user_agent)

    service = RelayService(ollama)

    try:
        await _send(
            websocket,
            WsWelcome(
                client_id=client.id,
                message=f"Welcome! You are Client {client.id}",
                connected_clients=len(registry),
            ),
        )
        await _broadcast_client_list(registry)

        while True:
            message = await _decode_message(websocket, await websocket.receive_text())
            registry.touch(client.id)
            match message:
                case None:
                    continue
                case ChatMessage():
                    await _run_chat(registry, service, client, message)
                case CancelMessage():
                    # Cancel with nothing running: ignore
                    continue
                case _:
                    await _handle_control(registry, client, message)

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WebSocket session for client %s failed", client.id)
        try:
            await websocket.close(code=1011, reason="Internal server error")
        except RuntimeError:
            pass
    finally:
        registry.unregister(client.id)
        log_client_activity(client.id, "DISCONNECTED")
        await registry.broadcast(
            WsClientDisconnected(
                client_id=client.id,
                name=client.name,
                message=f"{client.name} disconnected",
            )
        )
        await _broadcast_client_list(registry)
