"""Keep the browser process alive after its last visible window closes."""

import asyncio
import logging
from typing import Optional

from .ports import BrowserPort, KeepAliveExistsError

logger = logging.getLogger(__name__)


class KeepAliveController:
    """One invisible anchor surface per browser process.

    Shared by every ServiceSession attached to the same browser, each of
    which runs its own synchronizer task. Callers that arrive while a
    creation is in flight await that same creation instead of starting
    another. A failure because the surface already exists (for example
    opened by another agent on the same browser) counts as success.
    """

    def __init__(self, browser: BrowserPort):
        self.browser = browser
        self._alive = False
        self._creating: Optional[asyncio.Task] = None

    @property
    def alive(self) -> bool:
        return self._alive

    async def ensure_alive(self) -> bool:
        """Returns True when a keep-alive surface is known to exist."""
        if self._alive:
            return True
        if self._creating is None or self._creating.done():
            self._creating = asyncio.get_running_loop().create_task(self._create())
        # A cancelled caller must not cancel the creation for the others.
        return await asyncio.shield(self._creating)

    async def _create(self) -> bool:
        try:
            await self.browser.create_keepalive()
            logger.info("Keep-alive surface created")
        except KeepAliveExistsError:
            logger.debug("Keep-alive surface already exists")
        except Exception as e:
            logger.error(f"Failed to create keep-alive surface: {e}")
            return False
        self._alive = True
        return True
