"""Unit tests for the newline-delimited JSON-RPC frame codec.

Tests cover:
- Line splitting across arbitrary read boundaries
- Dropping of malformed and non-protocol lines
- Envelope shape validation
- Async reading from a StreamReader
"""

from __future__ import annotations

import asyncio
import json

import pytest

from uplink.acp.codec import (
    READ_CHUNK_SIZE,
    FrameDecoder,
    encode_envelope,
    parse_envelope,
    read_frames,
)
from uplink.acp.types import EnvelopeKind, make_notification, make_request, make_response
from uplink.errors import ProtocolParseError

# =============================================================================
# parse_envelope / encode_envelope
# =============================================================================


class TestParseEnvelope:
    """Tests for parsing a single line."""

    def test_request(self) -> None:
        """A message with method and id is a request."""
        envelope = parse_envelope('{"jsonrpc":"2.0","id":1,"method":"initialize","params":{}}')

        assert envelope.kind == EnvelopeKind.REQUEST
        assert envelope.id == 1
        assert envelope.method == "initialize"

    def test_notification_has_no_id(self) -> None:
        """A message with method and no id is a notification."""
        envelope = parse_envelope('{"jsonrpc":"2.0","method":"session/update","params":{}}')

        assert envelope.kind == EnvelopeKind.NOTIFICATION
        assert not envelope.has_id

    def test_response_with_null_result(self) -> None:
        """A null result still makes a response."""
        envelope = parse_envelope('{"jsonrpc":"2.0","id":"a","result":null}')

        assert envelope.kind == EnvelopeKind.RESPONSE
        assert envelope.result is None

    def test_error_response(self) -> None:
        """An error member makes a response."""
        envelope = parse_envelope(
            '{"jsonrpc":"2.0","id":3,"error":{"code":-32601,"message":"nope"}}'
        )

        assert envelope.is_response
        assert envelope.error is not None
        assert envelope.error.code == -32601

    def test_id_type_is_preserved(self) -> None:
        """String and integer ids stay distinct."""
        as_int = parse_envelope('{"jsonrpc":"2.0","id":1,"result":{}}')
        as_str = parse_envelope('{"jsonrpc":"2.0","id":"1","result":{}}')

        assert as_int.id == 1
        assert as_str.id == "1"
        assert type(as_int.id) is int
        assert type(as_str.id) is str

    def test_fractional_id_round_trips(self) -> None:
        """A fractional id is accepted and echoed with its type and value."""
        request = parse_envelope('{"jsonrpc":"2.0","id":1.5,"method":"initialize","params":{}}')

        assert request.is_request
        assert request.id == 1.5
        assert type(request.id) is float

        data = json.loads(encode_envelope(make_response(request.id, {})))
        assert data == {"jsonrpc": "2.0", "id": 1.5, "result": {}}

    @pytest.mark.parametrize(
        "line",
        [
            "not json",
            "[1, 2, 3]",
            '"just a string"',
            '{"jsonrpc":"2.0"}',
            '{"jsonrpc":"2.0","id":1,"method":"x","result":{}}',
            '{"jsonrpc":"2.0","result":{}}',
            '{"jsonrpc":"1.0","id":1,"method":"x"}',
            '{"jsonrpc":"2.0","id":true,"method":"x"}',
        ],
    )
    def test_malformed_lines_raise(self, line: str) -> None:
        """Malformed lines raise ProtocolParseError."""
        with pytest.raises(ProtocolParseError):
            parse_envelope(line)

    def test_encode_is_single_line(self) -> None:
        """Encoded envelopes contain no newline."""
        line = encode_envelope(make_request(1, "session/prompt", {"text": "a\nb"}))

        assert "\n" not in line
        assert json.loads(line)["params"]["text"] == "a\nb"

    def test_encode_notification_omits_id(self) -> None:
        """Notifications never carry an id on the wire."""
        data = json.loads(encode_envelope(make_notification("session/cancel", {"sessionId": "s"})))

        assert "id" not in data
        assert data["jsonrpc"] == "2.0"

    def test_encode_response_keeps_null_result(self) -> None:
        """A response with a null result keeps the result member."""
        data = json.loads(encode_envelope(make_response("x", None)))

        assert data == {"jsonrpc": "2.0", "id": "x", "result": None}


# =============================================================================
# FrameDecoder
# =============================================================================


class TestFrameDecoder:
    """Tests for incremental decoding."""

    def test_split_across_reads(self) -> None:
        """A line split over several reads yields one frame."""
        decoder = FrameDecoder()
        line = b'{"jsonrpc":"2.0","method":"session/update","params":{"a":1}}\n'

        assert decoder.feed(line[:10]) == []
        assert decoder.feed(line[10:30]) == []
        frames = decoder.feed(line[30:])

        assert len(frames) == 1
        assert frames[0].envelope.method == "session/update"

    def test_multiple_lines_in_one_read(self) -> None:
        """Several lines in one read yield frames in order."""
        decoder = FrameDecoder()
        data = (
            b'{"jsonrpc":"2.0","id":1,"result":{}}\n'
            b'{"jsonrpc":"2.0","id":2,"result":{}}\n'
            b'{"jsonrpc":"2.0","id":3,"res'
        )

        frames = decoder.feed(data)

        assert [f.envelope.id for f in frames] == [1, 2]
        assert decoder.feed(b'ult":{}}\n')[0].envelope.id == 3

    def test_multibyte_character_split(self) -> None:
        """A UTF-8 sequence split across reads is reassembled."""
        decoder = FrameDecoder()
        data = '{"jsonrpc":"2.0","method":"m","params":{"t":"héllo ✓"}}\n'.encode()
        split = data.index("✓".encode()) + 1

        assert decoder.feed(data[:split]) == []
        frames = decoder.feed(data[split:])

        assert frames[0].envelope.params == {"t": "héllo ✓"}

    def test_malformed_lines_are_dropped(self) -> None:
        """Non-protocol lines are skipped and counted; valid ones survive."""
        decoder = FrameDecoder()
        data = (
            b"Starting agent v1.2...\n"
            b'{"jsonrpc":"2.0","id":1,"result":{}}\n'
            b"{broken\n"
            b'{"jsonrpc":"2.0","method":"x"}\n'
        )

        frames = decoder.feed(data)

        assert len(frames) == 2
        assert decoder.dropped == 2

    def test_blank_lines_and_crlf(self) -> None:
        """Blank lines are ignored and CRLF endings are stripped."""
        decoder = FrameDecoder()

        frames = decoder.feed(b'\n\r\n{"jsonrpc":"2.0","method":"x"}\r\n')

        assert len(frames) == 1
        assert frames[0].line == '{"jsonrpc":"2.0","method":"x"}'
        assert decoder.dropped == 0

    def test_frame_keeps_raw_line(self) -> None:
        """The raw line is kept for verbatim relaying."""
        decoder = FrameDecoder()
        raw = '{"id": 7, "jsonrpc": "2.0", "result": {"x": [1, 2]}}'

        frame = decoder.feed(raw.encode() + b"\n")[0]

        assert frame.line == raw

    def test_flush_returns_trailing_line(self) -> None:
        """An unterminated final line is decoded at end of stream."""
        decoder = FrameDecoder()
        decoder.feed(b'{"jsonrpc":"2.0","method":"x"}')

        frames = decoder.flush()

        assert len(frames) == 1
        assert decoder.flush() == []


# =============================================================================
# read_frames
# =============================================================================


class TestReadFrames:
    """Tests for reading frames from a stream."""

    @pytest.mark.asyncio
    async def test_reads_until_eof(self) -> None:
        """Frames are yielded in order until the stream ends."""
        reader = asyncio.StreamReader()
        reader.feed_data(b'{"jsonrpc":"2.0","id":1,"result":{}}\nnoise\n')
        reader.feed_data(b'{"jsonrpc":"2.0","id":2,"result":{}}')
        reader.feed_eof()

        ids = [frame.envelope.id async for frame in read_frames(reader)]

        assert ids == [1, 2]

    @pytest.mark.asyncio
    async def test_line_longer_than_read_chunk(self) -> None:
        """Lines larger than one read are supported."""
        text = "x" * (READ_CHUNK_SIZE * 3)
        line = json.dumps({"jsonrpc": "2.0", "method": "m", "params": {"text": text}})
        reader = asyncio.StreamReader()
        reader.feed_data(line.encode() + b"\n")
        reader.feed_eof()

        frames = [frame async for frame in read_frames(reader)]

        assert len(frames) == 1
        assert frames[0].envelope.params == {"text": text}
