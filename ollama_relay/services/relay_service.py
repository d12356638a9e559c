"""
Relay service: turns one chat prompt into outbound protocol events.
"""
import logging
from typing import AsyncGenerator

from ollama_relay.schemas.ws import StreamStats, WsStream, WsStreamEnd
from ollama_relay.services.connection_registry import log_client_activity
from ollama_relay.services.ndjson_reassembler import is_done
from ollama_relay.services.ollama_client import OllamaClient

logger = logging.getLogger(__name__)

PROMPT_LOG_PREVIEW = 100


class RelayService:
    """
    Streams a single generation:
    1. Forward the prompt upstream
    2. Emit a ``stream`` event per content token
    3. Emit ``stream_end`` with token stats once the upstream reports done

    Upstream errors propagate to the caller unchanged.
    """

    def __init__(self, ollama: OllamaClient) -> None:
        self._ollama = ollama

    async def stream_chat(
        self,
        client_id: int,
        prompt: str,
        model: str | None = None,
    ) -> AsyncGenerator[WsStream | WsStreamEnd, None]:
        resolved_model = model or self._ollama.default_model
        log_client_activity(
            client_id,
            "OLLAMA_REQUEST",
            model=resolved_model,
            prompt=prompt[:PROMPT_LOG_PREVIEW],
        )

        tokens = 0
        finished = False
        # The upstream iterator ends on its own after the done record, which
        # also releases the HTTP response.
        async for record in self._ollama.stream_generate(prompt, model=resolved_model):
            content = record.get("response")
            if isinstance(content, str) and content:
                tokens += 1
                yield WsStream(content=content)
            if is_done(record):
                finished = True

        if not finished:
            # No terminal record: the client applies its own timeout policy.
            logger.warning(
                "Upstream stream for client %s ended without done marker (%d tokens)",
                client_id,
                tokens,
            )
            return

        log_client_activity(client_id, "OLLAMA_COMPLETE", tokens=tokens, model=resolved_model)
        yield WsStreamEnd(stats=StreamStats(tokens=tokens, model=resolved_model))
