"""Incremental decoder for the helper's continuous JSON output."""

from __future__ import annotations

import asyncio
import codecs
import json
from typing import Any, AsyncIterator

from .errors import DecodeError

_OPENERS = "{["
_CLOSERS = "}]"


class StreamingDecoder:
    """Split an unbounded byte stream into top-level JSON objects and arrays.

    Values may be split across any number of chunks, and one chunk may carry
    several values, with or without whitespace between them. Top-level
    scalars are not part of the protocol and are rejected.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._text = codecs.getincrementaldecoder(encoding)(errors="strict")
        self._buffer = ""
        self._pos = 0
        self._depth = 0
        self._in_string = False
        self._escape = False

    @property
    def pending(self) -> bool:
        """True when a partial value is buffered."""

        return bool(self._buffer.strip())

    def feed(self, data: bytes) -> list[Any]:
        """Consume a chunk and return every value it completed."""

        try:
            self._buffer += self._text.decode(data)
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Helper output is not valid text: {exc}") from exc
        return self._drain()

    def close(self) -> None:
        """Signal end of stream; fails if a value was left incomplete."""

        try:
            self._buffer += self._text.decode(b"", final=True)
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Helper output ended mid-character: {exc}") from exc
        if self.pending:
            raise DecodeError("Helper output ended inside a JSON value.")

    def _drain(self) -> list[Any]:
        values: list[Any] = []
        buffer = self._buffer
        start = 0
        index = self._pos
        while index < len(buffer):
            char = buffer[index]
            if self._depth == 0:
                if char in _OPENERS:
                    start = index
                    self._depth = 1
                elif not char.isspace():
                    raise DecodeError(f"Unexpected {char!r} between JSON values.")
            elif self._in_string:
                if self._escape:
                    self._escape = False
                elif char == "\\":
                    self._escape = True
                elif char == '"':
                    self._in_string = False
            elif char == '"':
                self._in_string = True
            elif char in _OPENERS:
                self._depth += 1
            elif char in _CLOSERS:
                self._depth -= 1
                if self._depth == 0:
                    values.append(_loads(buffer[start : index + 1]))
                    start = index + 1
            index += 1

        if self._depth == 0:
            self._buffer = ""
            self._pos = 0
        else:
            self._buffer = buffer[start:]
            self._pos = index - start
        return values


async def decode_stream(
    reader: asyncio.StreamReader,
    decoder: StreamingDecoder | None = None,
    *,
    chunk_size: int = 65536,
) -> AsyncIterator[Any]:
    """Yield decoded values from ``reader`` until EOF."""

    decoder = decoder or StreamingDecoder()
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            decoder.close()
            return
        for value in decoder.feed(chunk):
            yield value


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise DecodeError(f"Invalid JSON from helper: {exc}") from exc


__all__ = ["StreamingDecoder", "decode_stream"]
