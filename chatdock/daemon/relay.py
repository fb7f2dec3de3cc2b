"""Native-messaging relay between a browser extension and a service daemon.

The browser starts ``chatdock relay`` with the extension on stdin/stdout.
The first frame must carry ``service``; the relay connects to that
service's agent socket, forwards the first frame and then copies frames
in both directions until either side closes. stdout belongs to the
framing, so nothing else may be written there.
"""

import asyncio
import json
import logging
import sys
from typing import Callable, Optional, Tuple

from ..config import agent_socket_path
from ..errors import ErrorCode, TransportError
from ..protocol import HEADER, read_frame_bytes
from ..services import get_service

logger = logging.getLogger(__name__)


async def open_stdio() -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Wrap the process's stdin/stdout as asyncio streams."""
    loop = asyncio.get_running_loop()

    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin.buffer)

    transport, protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, sys.stdout.buffer)
    writer = asyncio.StreamWriter(transport, protocol, None, loop)
    return reader, writer


def frame_service(body: bytes) -> str:
    """Extract the ``service`` field from the relay's first frame."""
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise TransportError(f"Invalid first frame: {e}", code=ErrorCode.FRAME_MALFORMED) from e

    service = data.get("service") if isinstance(data, dict) else None
    if not isinstance(service, str) or not service:
        raise TransportError("First frame must carry 'service'", code=ErrorCode.FRAME_MALFORMED)
    return service


async def pump(label: str, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    """Copy whole frames from reader to writer until EOF."""
    count = 0
    while True:
        body = await read_frame_bytes(reader)
        if body is None:
            break
        writer.write(HEADER.pack(len(body)) + body)
        await writer.drain()
        count += 1
    logger.debug(f"{label}: closed after {count} frame(s)")


class Relay:
    """One relay session: extension streams on one side, daemon socket on the other."""

    def __init__(self, ext_reader: asyncio.StreamReader, ext_writer: asyncio.StreamWriter,
                 connect: Optional[Callable] = None):
        self.ext_reader = ext_reader
        self.ext_writer = ext_writer
        self._connect = connect or self._connect_unix

    @staticmethod
    async def _connect_unix(service: str):
        path = agent_socket_path(service)
        return await asyncio.open_unix_connection(str(path))

    async def run(self) -> int:
        first = await read_frame_bytes(self.ext_reader)
        if first is None:
            logger.info("Extension closed before sending a frame")
            return 0

        service = get_service(frame_service(first)).name
        logger.info(f"Relaying for service: {service}")

        try:
            daemon_reader, daemon_writer = await self._connect(service)
        except OSError as e:
            logger.error(f"Cannot reach {service} daemon: {e}")
            return 1

        daemon_writer.write(HEADER.pack(len(first)) + first)
        await daemon_writer.drain()

        upstream = asyncio.create_task(pump("extension->daemon", self.ext_reader, daemon_writer))
        downstream = asyncio.create_task(pump("daemon->extension", daemon_reader, self.ext_writer))

        try:
            done, pending = await asyncio.wait({upstream, downstream}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, (ConnectionError, OSError)):
                    raise exc
        finally:
            daemon_writer.close()

        logger.info("Relay finished")
        return 0


async def run_relay() -> int:
    reader, writer = await open_stdio()
    return await Relay(reader, writer).run()
