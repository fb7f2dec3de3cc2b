"""Agent side of the message channel to the service daemon.

One channel per ServiceSession. Connection failures and disconnects are
retried after a fixed delay, forever. Sends are fire-and-forget: while
disconnected they are dropped and the agent keeps observing locally.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import BaseModel

from ..errors import TransportError
from ..protocol import Ready, WindowHidden, WindowShown, encode_frame, parse_message, read_frame

logger = logging.getLogger(__name__)

RECONNECT_DELAY = 5.0


class MessageChannel:
    """Framed duplex channel to the daemon's per-service socket."""

    def __init__(self, session, socket_path: Path, reconnect_delay: float = RECONNECT_DELAY):
        self.session = session
        self.socket_path = socket_path
        self.reconnect_delay = reconnect_delay
        self.service: Optional[str] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._announced = False
        self._message_handlers: List[Callable] = []
        self._connect_handlers: List[Callable[[], None]] = []
        self._disconnect_handlers: List[Callable[[], None]] = []

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    def on_message(self, handler: Callable) -> None:
        self._message_handlers.append(handler)

    def on_connect(self, handler: Callable[[], None]) -> None:
        self._connect_handlers.append(handler)

    def on_disconnect(self, handler: Callable[[], None]) -> None:
        self._disconnect_handlers.append(handler)

    def identify(self, service: str) -> None:
        """Set the service identity; announces immediately if connected."""
        self.service = service
        if self.connected and not self._announced:
            self._announce()

    def _announce(self) -> None:
        if self.send(Ready(service=self.service)):
            self._announced = True
            logger.info(f"Sent ready for {self.service}")

    def send(self, message: BaseModel) -> bool:
        """Queue a message on the socket. Returns False when not connected."""
        if not self.connected:
            logger.debug(f"Not connected, dropping {message.type}")
            return False
        try:
            self._writer.write(encode_frame(message))
        except (TransportError, OSError, RuntimeError) as e:
            logger.warning(f"Failed to send {message.type}: {e}")
            return False
        return True

    def report_visibility(self, visible: bool) -> None:
        """Send window_shown/window_hidden only when the value changes."""
        if self.session.last_emitted_visible == visible:
            return
        if self.send(WindowShown() if visible else WindowHidden()):
            self.session.last_emitted_visible = visible
            logger.debug(f"[{self.session.name}] Reported {'window_shown' if visible else 'window_hidden'}")

    async def connect(self) -> Optional[asyncio.StreamReader]:
        try:
            reader, writer = await asyncio.open_unix_connection(str(self.socket_path))
        except (OSError, ConnectionError) as e:
            logger.debug(f"Daemon not reachable at {self.socket_path}: {e}")
            return None

        self._writer = writer
        self._announced = False
        # Level-triggered state is re-sent to a fresh peer.
        self.session.last_emitted_visible = None
        logger.info(f"Connected to daemon at {self.socket_path}")

        if self.service:
            self._announce()
        for handler in self._connect_handlers:
            handler()
        return reader

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        while True:
            try:
                data = await read_frame(reader)
            except TransportError as e:
                logger.warning(f"Channel read failed: {e.message}")
                return
            except (ConnectionError, OSError) as e:
                logger.warning(f"Channel read failed: {e}")
                return
            if data is None:
                return

            try:
                message = parse_message(data)
            except TransportError as e:
                logger.warning(f"Ignoring message from daemon: {e.message}")
                continue

            for handler in self._message_handlers:
                try:
                    handler(message)
                except Exception as e:
                    logger.error(f"Message handler failed for {message.type}: {e}", exc_info=True)

    async def _close(self) -> None:
        writer, self._writer = self._writer, None
        self._announced = False
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    async def run(self) -> None:
        """Connect and serve forever, retrying after a fixed delay."""
        while True:
            reader = await self.connect()
            if reader is not None:
                await self._read_loop(reader)
                await self._close()
                logger.info("Daemon disconnected")
                for handler in self._disconnect_handlers:
                    handler()
            await asyncio.sleep(self.reconnect_delay)
