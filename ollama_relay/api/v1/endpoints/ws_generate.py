"""
Plain relay WebSocket.

Protocol:
  Client → Server:
    {"model": "...", "prompt": "...", ...}   generate request, extra fields forwarded

  Server → Client (text frames, no JSON envelope):
    "<token>"                             one frame per upstream token
    "\\n--- generation complete ---\\n"     then the server closes (1000)
    "Error ..."                           then the server closes

Close codes:
    1000: generation complete
    1003: request was not a JSON object
    1011: upstream or internal error
"""
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ollama_relay.core.dependencies import get_ollama_client
from ollama_relay.services.ndjson_reassembler import is_done
from ollama_relay.services.ollama_client import (
    OllamaClient,
    UpstreamHTTPError,
    UpstreamTransportError,
)

logger = logging.getLogger(__name__)

router = APIRouter()

COMPLETE_MARKER = "\n--- generation complete ---\n"


@router.websocket("/ws/generate")
async def websocket_generate(
    websocket: WebSocket,
    ollama: OllamaClient = Depends(get_ollama_client),
):
    """Relay raw generation tokens for one request, then close."""
    await websocket.accept()
    logger.info("Generate client connected")

    try:
        raw = await websocket.receive_text()
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            payload = None
        if not isinstance(payload, dict):
            await websocket.send_text("Error: request must be a JSON object")
            await websocket.close(code=1003)
            return

        prompt = str(payload.pop("prompt", ""))
        model = payload.pop("model", None)
        payload.pop("stream", None)
        logger.info("Forwarding prompt to %s (model=%s)", ollama.url, model or ollama.default_model)

        finished = False
        async for record in ollama.stream_generate(prompt, model=model, **payload):
            content = record.get("response")
            if isinstance(content, str) and content:
                await websocket.send_text(content)
            if is_done(record):
                finished = True

        if finished:
            await websocket.send_text(COMPLETE_MARKER)
        else:
            logger.warning("Upstream ended without done marker")
        await websocket.close(code=1000)

    except WebSocketDisconnect:
        logger.info("Generate client disconnected")
    except UpstreamHTTPError as exc:
        logger.error("Upstream rejected request: %s", exc)
        await websocket.send_text("Error connecting to Ollama (is it running?)")
        await websocket.close(code=1011)
    except UpstreamTransportError as exc:
        logger.error("Stream error: %s", exc)
        await websocket.send_text("Stream error")
        await websocket.close(code=1011)
    except Exception:
        logger.exception("Generate relay failed")
        try:
            await websocket.send_text("Internal server error")
            await websocket.close(code=1011)
        except RuntimeError:
            pass
