"""
Unit tests for NDJSON stream reassembly.
"""
from __future__ import annotations

import json

import pytest

from ollama_relay.services.ndjson_reassembler import (
    BufferOverflowError,
    NDJSONReassembler,
    ReassemblerClosedError,
    is_done,
    iter_records,
)

STREAM = (
    b'{"model":"llama2","response":"Hel","done":false}\n'
    b'{"model":"llama2","response":"lo \xc3\xa9t\xc3\xa9","done":false}\n'
    b"\n"
    b'{"model":"llama2","response":"","done":true,"eval_count":2}\n'
)


def _collect(reassembler: NDJSONReassembler, chunks: list[bytes]) -> list:
    records: list = []
    for chunk in chunks:
        records.extend(reassembler.feed(chunk))
    tail = reassembler.flush()
    if tail is not None:
        records.append(tail)
    return records


def test_single_chunk_yields_records_in_order() -> None:
    records = _collect(NDJSONReassembler(), [STREAM])

    assert [r["response"] for r in records] == ["Hel", "lo été", ""]
    assert records[-1]["done"] is True


def test_every_two_way_split_matches_single_chunk() -> None:
    """
    Splitting the byte stream at any offset, including inside a multi-byte
    character, must not change the records produced.
    """
    expected = _collect(NDJSONReassembler(), [STREAM])
    for offset in range(len(STREAM) + 1):
        got = _collect(NDJSONReassembler(), [STREAM[:offset], STREAM[offset:]])
        assert got == expected, f"split at {offset}"


def test_byte_at_a_time_matches_single_chunk() -> None:
    expected = _collect(NDJSONReassembler(), [STREAM])
    chunks = [STREAM[i:i + 1] for i in range(len(STREAM))]
    assert _collect(NDJSONReassembler(), chunks) == expected


def test_empty_feed_is_noop() -> None:
    reassembler = NDJSONReassembler()
    reassembler.feed(b'{"response":')

    assert reassembler.feed(b"") == []
    assert reassembler.buffer == '{"response":'
    assert reassembler.feed(b'"x"}\n') == [{"response": "x"}]


def test_trailing_newline_leaves_empty_buffer_and_flush_yields_nothing() -> None:
    reassembler = NDJSONReassembler()

    assert reassembler.feed(b'{"response":"a"}\n') == [{"response": "a"}]
    assert reassembler.buffer == ""
    assert reassembler.flush() is None


def test_malformed_line_is_skipped_without_blocking_later_lines() -> None:
    reported: list[str] = []
    reassembler = NDJSONReassembler(on_decode_error=lambda line, exc: reported.append(line))

    records = reassembler.feed(b'{"response":"a"}\n garbage \n{"response":"b"}\n')

    assert records == [{"response": "a"}, {"response": "b"}]
    assert reported == [" garbage "]


def test_malformed_line_is_logged_by_default(caplog: pytest.LogCaptureFixture) -> None:
    reassembler = NDJSONReassembler()

    with caplog.at_level("WARNING"):
        assert reassembler.feed(b"not json\n") == []

    assert "Bad JSON from upstream" in caplog.text


def test_record_split_mid_key_is_reassembled() -> None:
    reassembler = NDJSONReassembler()

    assert reassembler.feed(b'{"resp') == []
    assert reassembler.feed(b'onse":"x"}\n') == [{"response": "x"}]


def test_chunk_without_newline_only_grows_buffer() -> None:
    reassembler = NDJSONReassembler()

    assert reassembler.feed(b'{"response"') == []
    assert reassembler.feed(b':"partial"') == []
    assert reassembler.buffer == '{"response":"partial"'


def test_done_marker_record() -> None:
    records = NDJSONReassembler().feed(b'{"done":true}\n')

    assert records == [{"done": True}]
    assert is_done(records[0])


def test_is_done_ignores_falsy_and_non_objects() -> None:
    assert not is_done({"done": False})
    assert not is_done({"response": "x"})
    assert not is_done([1, 2])
    assert not is_done(None)


def test_is_done_requires_boolean_true() -> None:
    assert not is_done({"done": "false"})
    assert not is_done({"done": 1})
    assert not is_done({"done": "true"})
    assert is_done({"done": True, "response": ""})


def test_flush_decodes_unterminated_done_marker() -> None:
    reassembler = NDJSONReassembler()
    reassembler.feed(b'{"done":true}')

    assert reassembler.flush() == {"done": True}


def test_flush_on_empty_buffer_yields_nothing() -> None:
    assert NDJSONReassembler().flush() is None


def test_flush_reports_premature_end() -> None:
    reported: list[str] = []
    reassembler = NDJSONReassembler(on_decode_error=lambda line, exc: reported.append(line))
    reassembler.feed(b'{"response":"cut')

    assert reassembler.flush() is None
    assert reported == ['{"response":"cut']


def test_flush_is_terminal() -> None:
    reassembler = NDJSONReassembler()
    reassembler.flush()

    assert reassembler.closed
    with pytest.raises(ReassemblerClosedError):
        reassembler.feed(b"{}\n")
    with pytest.raises(ReassemblerClosedError):
        reassembler.flush()


def test_unknown_keys_are_kept_not_rejected() -> None:
    records = NDJSONReassembler().feed(b'{"response":"a","context":[1,2],"new_field":{}}\n')

    assert records[0]["response"] == "a"
    assert records[0]["new_field"] == {}


def test_text_chunks_are_accepted() -> None:
    reassembler = NDJSONReassembler()

    assert reassembler.feed('{"response":"é"}\n') == [{"response": "é"}]


def test_buffer_cap_raises_when_exceeded() -> None:
    reassembler = NDJSONReassembler(max_buffer_chars=8)
    reassembler.feed(b'{"a":1}\n1234')

    with pytest.raises(BufferOverflowError) as exc_info:
        reassembler.feed(b"56789")

    assert exc_info.value.limit == 8
    assert exc_info.value.size == 9


def test_buffer_cap_counts_only_the_incomplete_tail() -> None:
    reassembler = NDJSONReassembler(max_buffer_chars=4)
    line = json.dumps({"response": "a long complete line"}).encode() + b"\n"

    assert reassembler.feed(line) == [{"response": "a long complete line"}]


async def _chunks(parts: list[bytes], consumed: list[bytes]):
    for part in parts:
        consumed.append(part)
        yield part


@pytest.mark.asyncio
async def test_iter_records_stops_at_done_without_consuming_more_chunks() -> None:
    consumed: list[bytes] = []
    parts = [
        b'{"response":"a"}\n{"do',
        b'ne":true}\n{"response":"late"}\n',
        b'{"response":"never read"}\n',
    ]

    records = [r async for r in iter_records(_chunks(parts, consumed))]

    assert records == [{"response": "a"}, {"done": True}]
    assert consumed == parts[:2]


@pytest.mark.asyncio
async def test_iter_records_flushes_tail_on_normal_end() -> None:
    consumed: list[bytes] = []
    parts = [b'{"response":"a"}\n', b'{"done":true}']

    records = [r async for r in iter_records(_chunks(parts, consumed))]

    assert records == [{"response": "a"}, {"done": True}]


@pytest.mark.asyncio
async def test_iter_records_propagates_source_errors() -> None:
    async def failing():
        yield b'{"response":"a"}\n'
        raise ConnectionResetError("peer reset")

    received: list = []
    with pytest.raises(ConnectionResetError):
        async for record in iter_records(failing()):
            received.append(record)

    assert received == [{"response": "a"}]


@pytest.mark.asyncio
async def test_iter_records_keeps_going_past_non_boolean_done() -> None:
    consumed: list[bytes] = []
    parts = [b'{"done":"false","response":"a"}\n', b'{"done":1}\n', b'{"done":true}\n']

    records = [r async for r in iter_records(_chunks(parts, consumed))]

    assert len(records) == 3
    assert consumed == parts
