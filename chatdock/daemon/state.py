"""Authoritative per-service daemon state.

The daemon owns visibility intent, the badge count and the DND flag.
Intent changes are broadcast to every connected agent and, independently,
applied through the desktop shell helper addressed by window class.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import BaseModel

from ..config import ServiceConfig, save_service_config
from ..protocol import DndChanged, HideWindow, ShowWindow
from ..services import ServiceDefinition

logger = logging.getLogger(__name__)


class DaemonState:
    """Single owner of one service's daemon-side state."""

    def __init__(
        self,
        service: ServiceDefinition,
        service_config: ServiceConfig,
        shell=None,
        start_minimized: bool = False,
        config_path: Optional[Path] = None,
    ):
        self.service = service
        self.service_config = service_config
        self.shell = shell
        self.config_path = config_path
        self.visible = False
        self.badge_count = 0
        self.dnd = service_config.do_not_disturb
        self.start_minimized = start_minimized or service_config.start_minimized
        self.quit_event = asyncio.Event()
        self._subscribers: Set[asyncio.Queue] = set()
        self._listeners: List[Callable[[], None]] = []

    # Agent fan-out ---------------------------------------------------------

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def agent_count(self) -> int:
        return len(self._subscribers)

    def broadcast(self, message: BaseModel) -> None:
        for queue in self._subscribers:
            queue.put_nowait(message)
        logger.debug(f"Broadcast {message.type} to {len(self._subscribers)} agent(s)")

    # Change listeners (status publishing) ----------------------------------

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        for listener in self._listeners:
            try:
                listener()
            except Exception as e:
                logger.error(f"State listener failed: {e}", exc_info=True)

    # Intent ------------------------------------------------------------------

    async def request_show(self) -> None:
        self.visible = True
        self.broadcast(ShowWindow())
        self._changed()
        if self.shell is not None:
            await self.shell.focus_window(self.service.wm_class)

    async def request_hide(self) -> None:
        self.visible = False
        self.broadcast(HideWindow())
        self._changed()
        if self.shell is not None:
            await self.shell.hide_window(self.service.wm_class)

    async def toggle(self) -> None:
        if self.visible:
            await self.request_hide()
        else:
            await self.request_show()

    def request_quit(self) -> None:
        logger.info("Quit requested")
        self.quit_event.set()

    async def set_dnd(self, enabled: bool) -> None:
        """Change DND, persist it and broadcast to agents."""
        if enabled == self.dnd:
            return
        self.dnd = enabled
        self.service_config = self.service_config.model_copy(update={"do_not_disturb": enabled})
        try:
            await asyncio.to_thread(save_service_config, self.service.name,
                                    self.service_config, self.config_path)
        except OSError as e:
            logger.error(f"Failed to persist DND for {self.service.name}: {e}")
        logger.info(f"DND {'enabled' if enabled else 'disabled'} for {self.service.name}")
        self.broadcast(DndChanged(enabled=enabled))
        self._changed()

    # Agent reports -------------------------------------------------------------

    def set_visible(self, visible: bool) -> bool:
        """Apply a level-triggered visibility report. Returns True on change."""
        if visible == self.visible:
            return False
        self.visible = visible
        self._changed()
        return True

    def set_badge(self, count: int) -> None:
        if count == self.badge_count:
            return
        self.badge_count = count
        self._changed()

    def status(self) -> Dict[str, Any]:
        return {
            "service": self.service.name,
            "visible": self.visible,
            "badge_count": self.badge_count,
            "dnd": self.dnd,
        }
