"""Frame codec for newline-delimited JSON-RPC streams.

Turns a raw byte stream into parsed envelopes, one per ``\\n``-terminated
line. The external process may print diagnostics that are not protocol
messages, so a line that fails to parse is dropped and only logged.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from pydantic import ValidationError

from ..errors import ProtocolParseError
from .types import Envelope

logger = logging.getLogger(__name__)

# Bytes requested from the stream per read. Lines may be longer than this.
READ_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class Frame:
    """One protocol line: the raw text as received plus its parsed envelope."""

    line: str
    envelope: Envelope


def parse_envelope(line: str) -> Envelope:
    """Parse one line into an envelope.

    Raises:
        ProtocolParseError: If the line is not a JSON object shaped like a
            JSON-RPC 2.0 message.
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolParseError(f"Invalid JSON: {e}", line) from e

    if not isinstance(data, dict):
        raise ProtocolParseError("JSON-RPC message must be an object", line)

    try:
        return Envelope.model_validate(data)
    except ValidationError as e:
        raise ProtocolParseError(f"Invalid envelope: {e.error_count()} error(s)", line) from e


def encode_envelope(envelope: Envelope) -> str:
    """Serialize an envelope to a single line (without the terminator)."""
    return json.dumps(envelope.to_wire(), ensure_ascii=False, separators=(",", ":"))


class FrameDecoder:
    """Incremental decoder from bytes to frames.

    Splitting happens on bytes, so a multi-byte UTF-8 sequence that straddles
    two reads is reassembled before decoding.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.dropped = 0

    def feed(self, data: bytes) -> list[Frame]:
        """Buffer ``data`` and return the frames of all completed lines."""
        self._buffer.extend(data)
        frames: list[Frame] = []

        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            raw = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]

            frame = self._decode_line(raw)
            if frame is not None:
                frames.append(frame)

        return frames

    def flush(self) -> list[Frame]:
        """Decode a trailing unterminated line at end of stream."""
        if not self._buffer:
            return []
        raw = bytes(self._buffer)
        self._buffer.clear()
        frame = self._decode_line(raw)
        return [frame] if frame is not None else []

    def _decode_line(self, raw: bytes) -> Frame | None:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return None

        try:
            envelope = parse_envelope(line)
        except ProtocolParseError as e:
            self.dropped += 1
            logger.debug(f"Dropping non-protocol line ({e}): {line[:80]}")
            return None

        return Frame(line=line, envelope=envelope)


async def read_frames(reader: asyncio.StreamReader) -> AsyncIterator[Frame]:
    """Yield frames from ``reader`` until end of stream.

    The sequence is tied to the live stream and cannot be restarted.
    """
    decoder = FrameDecoder()

    while True:
        data = await reader.read(READ_CHUNK_SIZE)
        if not data:
            break
        for frame in decoder.feed(data):
            yield frame

    for frame in decoder.flush():
        yield frame
