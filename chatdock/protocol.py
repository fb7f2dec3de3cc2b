"""Message schema and wire framing for the agent <-> daemon channel.

Frames are a 4-byte little-endian unsigned length followed by that many
bytes of UTF-8 JSON (the browser native-messaging framing, so the same
codec serves the relay). Every message is an object tagged by ``type``.
"""

import asyncio
import json
import struct
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import ErrorCode, FrameTooLargeError, TransportError


MAX_MESSAGE_SIZE = 1_048_576
HEADER = struct.Struct("<I")


class Ready(BaseModel):
    """agent -> daemon: identity announce on (re)connect."""
    type: Literal["ready"] = "ready"
    service: str


class HideWindow(BaseModel):
    type: Literal["hide_window"] = "hide_window"


class ShowWindow(BaseModel):
    type: Literal["show_window"] = "show_window"


class WindowHidden(BaseModel):
    type: Literal["window_hidden"] = "window_hidden"


class WindowShown(BaseModel):
    type: Literal["window_shown"] = "window_shown"


class DndChanged(BaseModel):
    type: Literal["dnd_changed"] = "dnd_changed"
    enabled: bool


class BadgeUpdate(BaseModel):
    type: Literal["badge_update"] = "badge_update"
    count: int = Field(..., ge=0)


class Notification(BaseModel):
    """agent -> daemon: a notification raised by the page itself."""
    type: Literal["notification"] = "notification"
    title: str = ""
    body: str = ""
    icon: Optional[str] = None


class DomNotification(BaseModel):
    """Scraped unread conversation; consumed by the agent, never forwarded."""
    type: Literal["dom_notification"] = "dom_notification"
    sender: str = ""
    body: str = ""
    icon: Optional[str] = None
    href: Optional[str] = None


class NavigateToConversation(BaseModel):
    type: Literal["navigate_to_conversation"] = "navigate_to_conversation"
    url: str


class Ping(BaseModel):
    type: Literal["ping"] = "ping"


Message = Annotated[
    Union[
        Ready,
        HideWindow,
        ShowWindow,
        WindowHidden,
        WindowShown,
        DndChanged,
        BadgeUpdate,
        Notification,
        DomNotification,
        NavigateToConversation,
        Ping,
    ],
    Field(discriminator="type"),
]

_message_adapter: TypeAdapter = TypeAdapter(Message)


def parse_message(data: Dict[str, Any]):
    """Validate a decoded JSON object into a typed message.

    Raises:
        TransportError: If the object is not a known, well-formed message
    """
    try:
        return _message_adapter.validate_python(data)
    except ValidationError as e:
        raise TransportError(
            f"Malformed message {data.get('type') if isinstance(data, dict) else data!r}: {e}",
            code=ErrorCode.FRAME_MALFORMED,
        ) from e


def encode_frame(payload: Union[BaseModel, Dict[str, Any]]) -> bytes:
    if isinstance(payload, BaseModel):
        body = payload.model_dump_json().encode("utf-8")
    else:
        body = json.dumps(payload).encode("utf-8")
    if len(body) > MAX_MESSAGE_SIZE:
        raise FrameTooLargeError(len(body), MAX_MESSAGE_SIZE)
    return HEADER.pack(len(body)) + body


async def read_frame_bytes(reader: asyncio.StreamReader) -> Optional[bytes]:
    """Read one frame body. Returns None on clean EOF at a frame boundary."""
    try:
        header = await reader.readexactly(HEADER.size)
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            return None
        raise TransportError("Connection closed inside frame header") from e

    (length,) = HEADER.unpack(header)
    if length > MAX_MESSAGE_SIZE:
        raise FrameTooLargeError(length, MAX_MESSAGE_SIZE)

    try:
        return await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise TransportError("Connection closed inside frame body") from e


async def read_frame(reader: asyncio.StreamReader) -> Optional[Dict[str, Any]]:
    """Read one frame and decode its JSON object. None on EOF."""
    body = await read_frame_bytes(reader)
    if body is None:
        return None
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise TransportError(f"Invalid JSON frame: {e}", code=ErrorCode.FRAME_MALFORMED) from e
    if not isinstance(data, dict):
        raise TransportError("Frame is not a JSON object", code=ErrorCode.FRAME_MALFORMED)
    return data


async def write_frame(writer: asyncio.StreamWriter, payload: Union[BaseModel, Dict[str, Any]]) -> None:
    writer.write(encode_frame(payload))
    await writer.drain()
