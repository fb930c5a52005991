"""Tests for the streaming JSON decoder."""

from __future__ import annotations

import asyncio
import json

import pytest

from sybaselink.decoder import StreamingDecoder, decode_stream
from sybaselink.errors import DecodeError

RECORD = {
    "msgId": 7,
    "result": [[{"name": "Zoë {braces} [brackets]", "note": "quote \" and \\ slash"}]],
    "javaStartTime": 1700000000000,
    "javaEndTime": 1700000000012,
}


def test_value_fed_one_byte_at_a_time_is_reassembled() -> None:
    payload = json.dumps(RECORD, ensure_ascii=False).encode("utf-8")
    decoder = StreamingDecoder()
    values: list[object] = []

    for index in range(len(payload)):
        values.extend(decoder.feed(payload[index : index + 1]))

    assert values == [RECORD]
    assert values == StreamingDecoder().feed(payload)
    assert decoder.pending is False


def test_several_values_in_one_chunk() -> None:
    chunk = b'{"msgId":1,"result":[]}{"msgId":2,"result":[]}\n  {"msgId":3,"result":[]}'

    values = StreamingDecoder().feed(chunk)

    assert [value["msgId"] for value in values] == [1, 2, 3]


def test_value_split_across_chunks_is_held_until_complete() -> None:
    decoder = StreamingDecoder()

    assert decoder.feed(b'{"msgId":1,"res') == []
    assert decoder.pending is True
    assert decoder.feed(b'ult":[[{"a":"}"}]]}{"msg') == [{"msgId": 1, "result": [[{"a": "}"}]]}]
    assert decoder.feed(b'Id":2}') == [{"msgId": 2}]


def test_text_between_values_is_rejected() -> None:
    decoder = StreamingDecoder()

    with pytest.raises(DecodeError):
        decoder.feed(b'{"msgId":1} oops {"msgId":2}')


def test_invalid_json_inside_structure_is_rejected() -> None:
    with pytest.raises(DecodeError):
        StreamingDecoder().feed(b'{"msgId": 1,,}')


def test_close_rejects_truncated_value() -> None:
    decoder = StreamingDecoder()
    decoder.feed(b'{"msgId": 1')

    with pytest.raises(DecodeError):
        decoder.close()


@pytest.mark.anyio
async def test_decode_stream_yields_until_eof() -> None:
    reader = asyncio.StreamReader()
    reader.feed_data(b'{"msgId":1,"result":[]}{"msgId"')
    reader.feed_data(b':2,"result":[]}')
    reader.feed_eof()

    values = [value async for value in decode_stream(reader, chunk_size=5)]

    assert [value["msgId"] for value in values] == [1, 2]
