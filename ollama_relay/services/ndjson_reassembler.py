"""
Streaming NDJSON reassembly.

The upstream generation API streams one JSON value per line, but HTTP body
chunks arrive with boundaries unrelated to that line structure. The
reassembler buffers the undelimited tail of each chunk and emits only
complete, decoded records, in arrival order.

Usage:
    reassembler = NDJSONReassembler()
    for chunk in chunks:
        for record in reassembler.feed(chunk):
            ...
    tail = reassembler.flush()
"""
from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable
from typing import Any

logger = logging.getLogger(__name__)

DELIMITER = "\n"

DecodeErrorSink = Callable[[str, json.JSONDecodeError], None]


class ReassemblerError(Exception):
    """Base error for NDJSON reassembly."""
    pass


class ReassemblerClosedError(ReassemblerError):
    """Raised when a reassembler is used after flush()."""
    pass


class BufferOverflowError(ReassemblerError):
    """Raised when the undelimited tail grows beyond the configured cap."""

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(
            f"NDJSON buffer holds {size} chars without a newline (limit {limit})"
        )


def _log_decode_error(line: str, exc: json.JSONDecodeError) -> None:
    logger.warning("Bad JSON from upstream: %r (%s)", line, exc.msg)


def is_done(record: Any) -> bool:
    """True when the record is the upstream terminal marker."""
    return isinstance(record, dict) and record.get("done") is True


class NDJSONReassembler:
    """
    Converts raw byte chunks into decoded NDJSON records.

    One instance per upstream request. Not thread-safe: calls to feed()
    must be serialized by the caller.
    """

    def __init__(
        self,
        *,
        on_decode_error: DecodeErrorSink | None = None,
        max_buffer_chars: int | None = None,
        encoding: str = "utf-8",
    ) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._on_decode_error = on_decode_error or _log_decode_error
        self._max_buffer_chars = max_buffer_chars
        self._closed = False

    @property
    def buffer(self) -> str:
        """The incomplete trailing line currently held."""
        return self._buffer

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, chunk: bytes | str) -> list[Any]:
        """
        Append a chunk and return every record completed by it.

        Args:
            chunk: Raw body bytes (or already-decoded text). May be empty.

        Returns:
            Decoded records in arrival order. Blank and malformed lines
            produce nothing; malformed ones are reported to the sink.

        Raises:
            ReassemblerClosedError: If flush() was already called.
            BufferOverflowError: If a max_buffer_chars cap is exceeded.
        """
        if self._closed:
            raise ReassemblerClosedError("feed() called after flush()")

        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        segments = (self._buffer + text).split(DELIMITER)

        # The last segment is always re-buffered, even when empty.
        self._buffer = segments.pop()
        if self._max_buffer_chars is not None and len(self._buffer) > self._max_buffer_chars:
            raise BufferOverflowError(len(self._buffer), self._max_buffer_chars)

        records: list[Any] = []
        for segment in segments:
            if not segment.strip():
                continue
            try:
                records.append(json.loads(segment))
            except json.JSONDecodeError as exc:
                self._on_decode_error(segment, exc)
        return records

    def flush(self) -> Any | None:
        """
        Decode whatever remains once the upstream signals end-of-data.

        Returns:
            The final record, or None when the tail is blank or malformed.
            A malformed tail (premature end) is reported to the sink.

        Raises:
            ReassemblerClosedError: If called more than once.
        """
        if self._closed:
            raise ReassemblerClosedError("flush() called twice")
        self._closed = True

        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if not tail.strip():
            return None
        try:
            return json.loads(tail)
        except json.JSONDecodeError as exc:
            self._on_decode_error(tail, exc)
            return None


async def iter_records(
    chunks: AsyncIterable[bytes],
    reassembler: NDJSONReassembler | None = None,
) -> AsyncIterator[Any]:
    """
    Pull records out of an async byte stream.

    Stops as soon as a terminal ``done`` record is yielded; chunks after it
    are never consumed. On a normal end-of-data the buffered tail is flushed.
    Errors raised by the chunk source propagate unchanged.
    """
    reassembler = reassembler or NDJSONReassembler()
    async for chunk in chunks:
        for record in reassembler.feed(chunk):
            yield record
            if is_done(record):
                return

    tail = reassembler.flush()
    if tail is not None:
        yield tail
