"""Agent process: wires sessions, the browser connection and the daemon channels."""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Set

import aiohttp

from ..config import GlobalConfig, agent_socket_path, runtime_dir
from ..errors import TransportError
from ..protocol import (
    BadgeUpdate,
    DndChanged,
    HideWindow,
    NavigateToConversation,
    Notification,
    Ping,
    ShowWindow,
)
from ..services import ServiceDefinition
from .badge import BADGE_INTERVAL, BadgeTracker
from .cdp import CdpClient
from .channel import RECONNECT_DELAY, MessageChannel
from .chrome import ChromeBrowser, ChromePage
from .keepalive import KeepAliveController
from .notifications import DesktopNotifier, IconCache, NotificationPipeline
from .ports import BrowserPort, PagePort
from .scraper import ConversationEntry, UnreadScanner
from .session import ServiceSession
from .storage import AgentStore
from .window_sync import (
    ChannelConnected,
    FocusGained,
    FocusLost,
    HideRequested,
    ShowRequested,
    WindowDiscovered,
    WindowRemoved,
    WindowSynchronizer,
)

logger = logging.getLogger(__name__)

FIRST_RUN_HINT_DELAY = 3.0
FIRST_RUN_HINT = ("Use the tray icon to show/hide {name}. "
                  "Clicking Close (×) resets your window.")


class ServiceAgent:
    """All agent components for one ServiceSession."""

    def __init__(
        self,
        session: ServiceSession,
        browser: BrowserPort,
        page: PagePort,
        keepalive: KeepAliveController,
        store: AgentStore,
        notifier: DesktopNotifier,
        icons: Optional[IconCache] = None,
        channel: Optional[MessageChannel] = None,
    ):
        self.session = session
        self.browser = browser
        self.page = page
        self.keepalive = keepalive
        self.store = store
        self.channel = channel or MessageChannel(session, agent_socket_path(session.name))
        self.sync = WindowSynchronizer(
            session, browser, keepalive, self.channel,
            persist_bounds=lambda bounds: store.set_bounds(session.name, bounds),
        )
        self.badge = BadgeTracker(session.service.badge_pattern)
        self.scanner = UnreadScanner(session) if session.service.scrape_unread else None
        self.pipeline = NotificationPipeline(
            session, notifier, page,
            show_window=lambda: self.sync.submit(ShowRequested()),
            forward=self.channel.send,
            icons=icons,
        )
        self._tasks: Set[asyncio.Task] = set()

        self.channel.on_message(self.handle_daemon_message)
        self.channel.on_connect(self._on_connect)
        self.channel.on_disconnect(self._on_disconnect)

    @property
    def name(self) -> str:
        return self.session.name

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _on_connect(self) -> None:
        self.badge.reset()
        self.sync.submit(ChannelConnected())

    def _on_disconnect(self) -> None:
        logger.info(f"[{self.name}] Daemon unreachable, continuing with local observation")

    def handle_daemon_message(self, message) -> None:
        if isinstance(message, HideWindow):
            self.sync.submit(HideRequested())
        elif isinstance(message, ShowWindow):
            self.sync.submit(ShowRequested())
        elif isinstance(message, DndChanged):
            if self.session.dnd != message.enabled:
                logger.info(f"[{self.name}] DND {'enabled' if message.enabled else 'disabled'}")
            self.session.dnd = message.enabled
        elif isinstance(message, NavigateToConversation):
            self._spawn(self.pipeline.open_conversation(message.url))
        elif isinstance(message, Ping):
            pass
        else:
            logger.debug(f"[{self.name}] Ignoring {message.type} from daemon")

    def handle_page_event(self, payload: Dict[str, Any], window_id: Optional[int]) -> None:
        kind = payload.get("kind")

        if kind == "focus" and window_id is not None:
            self.sync.submit(FocusGained(window_id))
        elif kind == "blur" and window_id is not None:
            self.sync.submit(FocusLost(window_id))
        elif kind == "closed":
            closed_id = payload.get("windowId")
            if closed_id is not None:
                self.sync.submit(WindowRemoved(closed_id))
        elif kind == "title":
            self.update_badge(payload.get("title"))
        elif kind == "notification":
            message = Notification(
                title=str(payload.get("title") or ""),
                body=str(payload.get("body") or ""),
                icon=payload.get("icon") or None,
            )
            self._spawn(self.pipeline.handle_page_notification(message))
        elif kind == "conversations":
            self.handle_conversations(payload.get("entries") or [])
        elif kind == "hint_dismissed":
            if not self.store.first_run_dismissed(self.name):
                logger.info(f"[{self.name}] First-run hint dismissed")
                self.store.dismiss_first_run(self.name)
        else:
            logger.debug(f"[{self.name}] Unknown page event {kind!r}")

    def handle_conversations(self, raw_entries: List[Dict[str, Any]]) -> None:
        if self.scanner is None:
            return
        entries = [ConversationEntry.from_dict(raw) for raw in raw_entries if isinstance(raw, dict)]
        for candidate in self.scanner.scan(entries):
            self._spawn(self.pipeline.handle_dom_notification(candidate))

    def update_badge(self, title: Optional[str]) -> None:
        count = self.badge.update(title)
        if count is None:
            return
        self.session.badge_count = count
        self.channel.send(BadgeUpdate(count=count))

    async def badge_loop(self) -> None:
        while True:
            await asyncio.sleep(BADGE_INTERVAL)
            try:
                title = await self.page.get_title()
            except TransportError as e:
                logger.debug(f"[{self.name}] Badge check skipped: {e.message}")
                continue
            if title is not None:
                self.update_badge(title)

    async def show_first_run_hint(self) -> None:
        await asyncio.sleep(FIRST_RUN_HINT_DELAY)
        text = FIRST_RUN_HINT.format(name=self.session.service.display_name)
        try:
            await self.page.show_first_run_hint(text)
        except TransportError as e:
            logger.debug(f"[{self.name}] Could not show first-run hint: {e.message}")

    async def startup(self) -> None:
        """Adopt an existing window, then announce the service identity."""
        saved = self.store.get_bounds(self.name)
        self.session.window = replace(self.session.window, saved_bounds=saved)

        try:
            window = await self.browser.find_window(list(self.session.service.url_prefixes))
        except TransportError as e:
            logger.warning(f"[{self.name}] Window scan failed: {e.message}")
            window = None
        if window is not None:
            logger.info(f"[{self.name}] Found existing window {window.window_id}")
            await self.sync.dispatch(WindowDiscovered(window))
        else:
            logger.info(f"[{self.name}] No window open yet")

        self.channel.identify(self.name)
        await self.keepalive.ensure_alive()

        if not self.store.first_run_dismissed(self.name):
            self._spawn(self.show_first_run_hint())

    async def run(self) -> None:
        await self.startup()
        await asyncio.gather(
            self.channel.run(),
            self.sync.run(),
            self.sync.poll_loop(),
            self.badge_loop(),
        )

    async def close(self) -> None:
        await self.pipeline.close()
        for task in list(self._tasks):
            task.cancel()


async def connect_browser(client: CdpClient) -> None:
    """Attach to the browser, retrying until its DevTools port answers."""
    while True:
        try:
            await client.connect()
            return
        except TransportError as e:
            logger.warning(f"{e.message}; retrying in {RECONNECT_DELAY:.0f}s")
            await asyncio.sleep(RECONNECT_DELAY)


async def run_agent(services: List[ServiceDefinition], config: GlobalConfig) -> int:
    """Run one agent for ``services`` sharing a single browser connection.

    Returns when the DevTools connection is lost (exit code 1) so the
    supervisor restarts the agent against the new browser process.
    """
    async with aiohttp.ClientSession() as http:
        client = CdpClient(config.devtools_url, http)
        await connect_browser(client)

        browser = ChromeBrowser(client)
        await browser.start()
        keepalive = KeepAliveController(browser)
        store = AgentStore()
        store.load()
        icons = IconCache(runtime_dir() / "icons", http)

        agents: List[ServiceAgent] = []
        for service in services:
            session = ServiceSession(service=service)
            page = ChromePage(client, browser, service)
            agent = ServiceAgent(
                session, browser, page, keepalive, store,
                DesktopNotifier(app_name=service.display_name), icons,
            )
            page.on_event(lambda payload, a=agent, p=page: a.handle_page_event(payload, p.window_id))
            try:
                await page.attach_existing()
            except TransportError as e:
                logger.warning(f"[{service.name}] Page scan failed, waiting for target events: {e.message}")
            agents.append(agent)

        tasks = [asyncio.create_task(agent.run(), name=f"agent-{agent.name}") for agent in agents]
        closed = asyncio.create_task(client.closed.wait())
        done, pending = await asyncio.wait(tasks + [closed], return_when=asyncio.FIRST_COMPLETED)

        for task in pending:
            task.cancel()
        for agent in agents:
            await agent.close()
        for task in done:
            if task is not closed and task.exception() is not None:
                logger.error(f"Agent task failed: {task.exception()}")
        await client.close()

    logger.error("Browser connection lost, agent exiting")
    return 1
