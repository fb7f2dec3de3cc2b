"""Daemon end of the agent message channel.

Listens on ``$XDG_RUNTIME_DIR/chatdock/<service>.sock``. Each connection
gets its own broadcast queue; agent reports are applied to DaemonState as
level-triggered, idempotent signals.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Set

from ..errors import TransportError
from ..protocol import (
    BadgeUpdate,
    DndChanged,
    Notification,
    Ready,
    WindowHidden,
    WindowShown,
    parse_message,
    read_frame,
    write_frame,
)
from .state import DaemonState

logger = logging.getLogger(__name__)


class AgentServer:
    """Unix socket server accepting agent (or relay) connections."""

    def __init__(self, state: DaemonState, socket_path: Path):
        self.state = state
        self.socket_path = socket_path
        self.server: Optional[asyncio.AbstractServer] = None
        self._tasks: Set[asyncio.Task] = set()
        self._writers: Set[asyncio.StreamWriter] = set()

    async def start(self) -> None:
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)
        if self.socket_path.exists():
            self.socket_path.unlink()

        self.server = await asyncio.start_unix_server(
            self._handle_client,
            path=str(self.socket_path)
        )
        logger.info(f"Listening for agents on {self.socket_path}")

    async def stop(self) -> None:
        if self.server:
            self.server.close()
        # Connected agents keep wait_closed() pending until dropped.
        for writer in list(self._writers):
            writer.close()
        for task in list(self._tasks):
            task.cancel()
        if self.server:
            await self.server.wait_closed()
        if self.socket_path.exists():
            self.socket_path.unlink()
        logger.info("Agent server stopped")

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        queue = self.state.subscribe()
        sender = asyncio.create_task(self._send_loop(queue, writer))
        self._tasks.add(sender)
        self._writers.add(writer)
        logger.info(f"Agent connected ({self.state.agent_count} total)")

        try:
            while True:
                data = await read_frame(reader)
                if data is None:
                    break
                try:
                    message = parse_message(data)
                except TransportError as e:
                    logger.warning(f"Unknown message from agent: {e.message}")
                    continue
                await self.handle_message(message, queue)
        except TransportError as e:
            logger.warning(f"Agent connection error: {e.message}")
        except (ConnectionError, OSError) as e:
            logger.debug(f"Agent connection ended: {e}")
        finally:
            self.state.unsubscribe(queue)
            sender.cancel()
            self._tasks.discard(sender)
            self._writers.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            logger.info(f"Agent disconnected ({self.state.agent_count} remaining)")

    async def _send_loop(self, queue: asyncio.Queue, writer: asyncio.StreamWriter) -> None:
        while True:
            message = await queue.get()
            try:
                await write_frame(writer, message)
            except (ConnectionError, OSError, TransportError) as e:
                logger.debug(f"Failed to send {message.type} to agent: {e}")
                return

    async def handle_message(self, message, queue: asyncio.Queue) -> None:
        """Apply one agent message. ``queue`` is the sender's outbound queue."""
        if isinstance(message, Ready):
            logger.info(f"Agent ready for service: {message.service}")
            if message.service != self.state.service.name:
                logger.warning(f"Agent announced {message.service} on the "
                               f"{self.state.service.name} socket")
            queue.put_nowait(DndChanged(enabled=self.state.dnd))

        elif isinstance(message, BadgeUpdate):
            logger.debug(f"Badge update: {message.count}")
            self.state.set_badge(message.count)

        elif isinstance(message, Notification):
            logger.debug(f"Notification: {message.title} - {message.body}")

        elif isinstance(message, WindowHidden):
            if self.state.set_visible(False):
                logger.info("Agent reports window hidden")

        elif isinstance(message, WindowShown):
            if self.state.start_minimized:
                self.state.start_minimized = False
                logger.info("Starting minimized, hiding first window")
                await self.state.request_hide()
            elif self.state.set_visible(True):
                logger.info("Agent reports window shown")

        else:
            logger.warning(f"Unexpected {message.type} from agent, ignoring")
