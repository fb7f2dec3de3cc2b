"""Session-bus client for the shell helper.

pydbus calls block, so they run in a worker thread. A missing helper is
routine (no compositor integration installed): calls then return False
and are logged at debug level only.
"""

import asyncio
import logging

from gi.repository import GLib
from pydbus import SessionBus

from ..shell import BUS_NAME, OBJECT_PATH

logger = logging.getLogger(__name__)


class ShellClient:
    """Calls FocusWindow/HideWindow on ``org.chatdock.ShellHelper``."""

    def __init__(self, bus=None):
        self._bus = bus
        self._proxy = None

    def _get_proxy(self):
        if self._proxy is None:
            bus = self._bus or SessionBus()
            self._proxy = bus.get(BUS_NAME, OBJECT_PATH)
        return self._proxy

    def _call(self, method: str, wm_class: str) -> bool:
        proxy = self._get_proxy()
        return bool(getattr(proxy, method)(wm_class))

    async def _invoke(self, method: str, wm_class: str) -> bool:
        try:
            result = await asyncio.to_thread(self._call, method, wm_class)
        except GLib.Error as e:
            logger.debug(f"Shell helper {method}({wm_class}) unavailable: {e}")
            self._proxy = None
            return False
        logger.debug(f"Shell helper {method}({wm_class}) -> {result}")
        return result

    async def focus_window(self, wm_class: str) -> bool:
        return await self._invoke("FocusWindow", wm_class)

    async def hide_window(self, wm_class: str) -> bool:
        return await self._invoke("HideWindow", wm_class)
