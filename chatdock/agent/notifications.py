"""Desktop notifications for page events and scraped unread conversations.

Notifications are shown with ``notify-send --wait`` so the agent learns
whether each one was clicked or closed. Every shown notification is
tracked as a PendingNotification until one of those outcomes arrives.
"""

import asyncio
import hashlib
import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

import aiohttp

from ..protocol import DomNotification, Notification
from .ports import PagePort
from .scraper import STARTUP_GRACE

logger = logging.getLogger(__name__)

ACTION_DEFAULT = "default"
OUTCOME_CLICKED = "clicked"
OUTCOME_CLOSED = "closed"


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    await process.wait()


@dataclass
class PendingNotification:
    """A desktop notification waiting to be clicked or closed."""

    notification_id: int
    href: Optional[str]
    sender: str
    preview: str
    icon: str = ""
    created_at: float = field(default_factory=time.time)


class ShownNotification:
    """Handle on a running ``notify-send --wait`` process."""

    def __init__(self, notification_id: int, process: asyncio.subprocess.Process):
        self.id = notification_id
        self.process = process

    async def outcome(self) -> str:
        """Wait for the notification to be clicked or closed."""
        line = await self.process.stdout.readline()
        await self.process.wait()
        return OUTCOME_CLICKED if line.decode().strip() == ACTION_DEFAULT else OUTCOME_CLOSED

    async def close(self) -> None:
        """Withdraw interest in the outcome and stop the process."""
        await _terminate(self.process)


class DesktopNotifier:
    """notify-send backend (libnotify, works with mako/SwayNC/dunst)."""

    def __init__(self, app_name: str, notify_send: Optional[str] = None):
        self.app_name = app_name
        self.notify_send = notify_send or shutil.which("notify-send")

    def build_args(self, title: str, body: str, icon_path: Optional[str]) -> List[str]:
        args = [
            self.notify_send,
            f"--app-name={self.app_name}",
            "--urgency=normal",
            "--print-id",
            "--wait",
            "--action=default=Open",
        ]
        if icon_path:
            args.append(f"--icon={icon_path}")
        args.extend([title, body])
        return args

    async def show(self, title: str, body: str, icon_path: Optional[str] = None) -> Optional[ShownNotification]:
        if not self.notify_send:
            logger.warning("notify-send not found, skipping notification")
            return None

        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_args(title, body, icon_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.error(f"Error sending notification: {e}")
            return None

        first_line = await process.stdout.readline()
        try:
            notification_id = int(first_line.decode().strip())
        except ValueError:
            logger.error(f"notify-send printed no notification id: {first_line!r}")
            await _terminate(process)
            return None

        logger.debug(f"Sent notification {notification_id}: {title}")
        return ShownNotification(notification_id, process)


class IconCache:
    """Downloads https notification icons so notify-send can show them."""

    def __init__(self, cache_dir: Path, http: Optional[aiohttp.ClientSession] = None):
        self.cache_dir = cache_dir
        self.http = http

    def path_for(self, url: str) -> Path:
        digest = hashlib.sha1(url.encode("utf-8")).hexdigest()
        return self.cache_dir / f"{digest}.img"

    async def resolve(self, url: Optional[str]) -> Optional[str]:
        if not url or not url.startswith("https://") or self.http is None:
            return None

        path = self.path_for(url)
        if path.exists():
            return str(path)

        try:
            async with self.http.get(url, timeout=aiohttp.ClientTimeout(total=5)) as resp:
                if resp.status != 200:
                    logger.debug(f"Icon fetch returned {resp.status} for {url}")
                    return None
                data = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Icon fetch failed for {url}: {e}")
            return None

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return str(path)


class NotificationPipeline:
    """Turns page and scrape events into desktop notifications.

    Gated by the session's DND mirror: while DND is on, candidates are
    dropped, never queued. Clicking a notification shows the window and
    routes to the conversation it came from.
    """

    def __init__(
        self,
        session,
        notifier: DesktopNotifier,
        page: PagePort,
        show_window: Callable[[], None],
        forward: Callable[[Notification], None],
        icons: Optional[IconCache] = None,
        grace: float = STARTUP_GRACE,
    ):
        self.session = session
        self.notifier = notifier
        self.page = page
        self.show_window = show_window
        self.forward = forward
        self.icons = icons
        self.grace = grace
        self.pending: Dict[int, PendingNotification] = {}
        self._waiters: Set[asyncio.Task] = set()
        self._handles: Dict[int, ShownNotification] = {}

    async def handle_page_notification(self, msg: Notification) -> None:
        """A notification raised by the page's own Notification API."""
        self.forward(msg)
        if self.session.dnd:
            logger.debug(f"[{self.session.name}] DND on, dropping page notification")
            return
        await self._show(
            title=msg.title or self.session.service.display_name,
            body=msg.body,
            icon=msg.icon or "",
            href=None,
        )

    async def handle_dom_notification(self, msg: DomNotification) -> None:
        """A scraped unread conversation; never forwarded to the daemon."""
        if self.session.dnd:
            logger.debug(f"[{self.session.name}] DND on, dropping conversation notification")
            return
        if self.session.elapsed() < self.grace:
            logger.debug(f"[{self.session.name}] Startup grace period, dropping {msg.href}")
            return
        if not msg.sender and not msg.body:
            return
        await self._show(
            title=msg.sender or self.session.service.display_name,
            body=msg.body,
            icon=msg.icon or "",
            href=msg.href,
        )

    async def _show(self, title: str, body: str, icon: str, href: Optional[str]) -> None:
        icon_path = await self.icons.resolve(icon) if self.icons else None
        shown = await self.notifier.show(title, body, icon_path)
        if shown is None:
            return

        self.pending[shown.id] = PendingNotification(
            notification_id=shown.id,
            href=href,
            sender=title,
            preview=body,
            icon=icon,
        )
        self._handles[shown.id] = shown
        task = asyncio.create_task(self._await_outcome(shown))
        self._waiters.add(task)
        task.add_done_callback(self._waiters.discard)

    async def _await_outcome(self, shown: ShownNotification) -> None:
        try:
            outcome = await shown.outcome()
        except Exception as e:
            logger.error(f"Lost track of notification {shown.id}: {e}")
            outcome = OUTCOME_CLOSED
        self._handles.pop(shown.id, None)
        if outcome == OUTCOME_CLICKED:
            await self.on_clicked(shown.id)
        else:
            self.on_closed(shown.id)

    def on_closed(self, notification_id: int) -> None:
        self.pending.pop(notification_id, None)

    async def on_clicked(self, notification_id: int) -> None:
        record = self.pending.pop(notification_id, None)
        if record is None:
            return

        logger.info(f"[{self.session.name}] Notification {notification_id} clicked")
        self.show_window()
        if record.href:
            await self.open_conversation(record.href)

    async def open_conversation(self, href: str) -> None:
        """Select the conversation in-page, falling back to full navigation."""
        if await self.page.select_conversation(href):
            return
        url = self.session.service.conversation_url(href)
        logger.debug(f"[{self.session.name}] No link for {href}, navigating to {url}")
        await self.page.navigate(url)

    async def close(self) -> None:
        """Stop waiting on every shown notification and end its process."""
        handles = list(self._handles.values())
        waiters = list(self._waiters)
        for task in waiters:
            task.cancel()
        await asyncio.gather(*waiters, return_exceptions=True)
        for shown in handles:
            await shown.close()
        self._handles.clear()
        self._waiters.clear()
