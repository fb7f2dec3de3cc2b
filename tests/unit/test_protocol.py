"""Tests for message schema and wire framing."""

import asyncio
import json
import struct

import pytest

from chatdock.errors import ErrorCode, FrameTooLargeError, TransportError
from chatdock.protocol import (
    MAX_MESSAGE_SIZE,
    BadgeUpdate,
    DndChanged,
    DomNotification,
    HideWindow,
    Notification,
    Ping,
    Ready,
    encode_frame,
    parse_message,
    read_frame,
    read_frame_bytes,
)


def _reader_with(data: bytes, eof: bool = True) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


class TestParseMessage:
    """Discriminated union on ``type``."""

    def test_parses_each_tag(self):
        assert isinstance(parse_message({"type": "ready", "service": "whatsapp"}), Ready)
        assert isinstance(parse_message({"type": "hide_window"}), HideWindow)
        assert parse_message({"type": "dnd_changed", "enabled": True}) == DndChanged(enabled=True)
        assert parse_message({"type": "badge_update", "count": 3}).count == 3
        assert isinstance(parse_message({"type": "ping"}), Ping)

    def test_notification_fields_default(self):
        msg = parse_message({"type": "notification"})
        assert isinstance(msg, Notification)
        assert msg.title == ""
        assert msg.icon is None

    def test_dom_notification(self):
        msg = parse_message({"type": "dom_notification", "sender": "Ann", "body": "hi",
                             "icon": None, "href": "/messages/t/1/"})
        assert isinstance(msg, DomNotification)
        assert msg.href == "/messages/t/1/"

    def test_unknown_type_rejected(self):
        with pytest.raises(TransportError) as exc:
            parse_message({"type": "explode"})
        assert exc.value.code == ErrorCode.FRAME_MALFORMED

    def test_negative_badge_rejected(self):
        with pytest.raises(TransportError):
            parse_message({"type": "badge_update", "count": -1})

    def test_missing_required_field_rejected(self):
        with pytest.raises(TransportError):
            parse_message({"type": "ready"})


class TestFraming:
    """4-byte little-endian length prefix followed by UTF-8 JSON."""

    def test_header_is_little_endian_length(self):
        frame = encode_frame(BadgeUpdate(count=3))
        (length,) = struct.unpack("<I", frame[:4])
        assert length == len(frame) - 4
        assert json.loads(frame[4:]) == {"type": "badge_update", "count": 3}

    def test_encode_plain_dict(self):
        frame = encode_frame({"service": "whatsapp"})
        assert json.loads(frame[4:]) == {"service": "whatsapp"}

    def test_encode_rejects_oversized(self):
        with pytest.raises(FrameTooLargeError):
            encode_frame({"body": "x" * MAX_MESSAGE_SIZE})

    @pytest.mark.asyncio
    async def test_read_frame(self):
        reader = _reader_with(encode_frame(Ready(service="messenger")))
        assert await read_frame(reader) == {"type": "ready", "service": "messenger"}
        assert await read_frame(reader) is None

    @pytest.mark.asyncio
    async def test_read_several_frames_in_one_chunk(self):
        reader = _reader_with(encode_frame(HideWindow()) + encode_frame(Ping()))
        assert (await read_frame(reader))["type"] == "hide_window"
        assert (await read_frame(reader))["type"] == "ping"

    @pytest.mark.asyncio
    async def test_clean_eof_returns_none(self):
        assert await read_frame_bytes(_reader_with(b"")) is None

    @pytest.mark.asyncio
    async def test_truncated_header_is_an_error(self):
        with pytest.raises(TransportError):
            await read_frame_bytes(_reader_with(b"\x05\x00"))

    @pytest.mark.asyncio
    async def test_truncated_body_is_an_error(self):
        with pytest.raises(TransportError):
            await read_frame_bytes(_reader_with(struct.pack("<I", 10) + b"{}"))

    @pytest.mark.asyncio
    async def test_oversized_length_rejected_before_reading_body(self):
        reader = _reader_with(struct.pack("<I", MAX_MESSAGE_SIZE + 1), eof=False)
        with pytest.raises(FrameTooLargeError):
            await read_frame_bytes(reader)

    @pytest.mark.asyncio
    async def test_non_object_json_rejected(self):
        body = b"[1, 2]"
        with pytest.raises(TransportError) as exc:
            await read_frame(_reader_with(struct.pack("<I", len(body)) + body))
        assert exc.value.code == ErrorCode.FRAME_MALFORMED

    @pytest.mark.asyncio
    async def test_invalid_utf8_rejected(self):
        body = b"\xff\xfe"
        with pytest.raises(TransportError):
            await read_frame(_reader_with(struct.pack("<I", len(body)) + body))
