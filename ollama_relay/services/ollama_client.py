"""
Upstream client for the Ollama generate API.

Streams newline-delimited JSON from ``POST /api/generate`` and yields one
decoded record per line through the NDJSON reassembler.
"""
import logging
from typing import Any, AsyncGenerator

import httpx

from ollama_relay.core.config import settings
from ollama_relay.services.ndjson_reassembler import (
    NDJSONReassembler,
    ReassemblerError,
    iter_records,
)

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Base error for upstream generation requests."""
    pass


class UpstreamHTTPError(UpstreamError):
    """Upstream answered with a non-success status."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        message = f"Upstream returned HTTP {status_code}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class UpstreamTransportError(UpstreamError):
    """The byte stream failed mid-request (connect, read, timeout, protocol)."""
    pass


class OllamaClient:
    """Thin async wrapper over a shared httpx client."""

    def __init__(
        self,
        url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        default_model: str | None = None,
    ) -> None:
        self._url = url or settings.OLLAMA_URL
        self._default_model = default_model or settings.OLLAMA_MODEL
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                settings.OLLAMA_TIMEOUT_SECONDS,
                connect=settings.OLLAMA_CONNECT_TIMEOUT_SECONDS,
            )
        )

    @property
    def url(self) -> str:
        return self._url

    @property
    def default_model(self) -> str:
        return self._default_model

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def stream_generate(
        self,
        prompt: str,
        model: str | None = None,
        **options: Any,
    ) -> AsyncGenerator[dict, None]:
        """
        Stream generation records for a prompt.

        Args:
            prompt: Prompt text.
            model: Model name override.
            **options: Extra request fields forwarded as-is (e.g. ``options``,
                ``system``). ``stream`` is always forced on.

        Yields:
            Decoded record dicts. Iteration ends after the ``done`` record,
            or when the upstream closes the body.

        Raises:
            UpstreamHTTPError: Non-2xx response.
            UpstreamTransportError: Connection, timeout, read or framing failure.
        """
        payload = {
            **options,
            "model": model or self._default_model,
            "prompt": prompt,
            "stream": True,
        }
        reassembler = NDJSONReassembler(max_buffer_chars=settings.ndjson_max_buffer_chars)
        logger.debug("POST %s model=%s", self._url, payload["model"])

        try:
            async with self._client.stream("POST", self._url, json=payload) as response:
                if response.is_error:
                    body = await response.aread()
                    raise UpstreamHTTPError(
                        response.status_code,
                        body.decode("utf-8", errors="replace")[:200],
                    )

                async for record in iter_records(response.aiter_bytes(), reassembler):
                    if not isinstance(record, dict):
                        logger.warning("Ignoring non-object record from upstream: %r", record)
                        continue
                    yield record
        except UpstreamError:
            raise
        except httpx.TimeoutException as exc:
            raise UpstreamTransportError(f"Timeout talking to {self._url}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamTransportError(f"Stream error: {exc}") from exc
        except ReassemblerError as exc:
            raise UpstreamTransportError(str(exc)) from exc
