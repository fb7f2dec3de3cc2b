"""DevTools-backed implementations of the browser and page ports.

Window handles are CDP ``windowId`` values. The keep-alive surface is a
hidden background target that never appears as a window or tab.
"""

import asyncio
import json
import logging
from importlib import resources
from typing import Any, Callable, Dict, List, Optional, Set

from ..errors import TransportError
from ..services import ServiceDefinition
from .cdp import CdpClient, CdpError
from .ports import (
    WINDOW_MINIMIZED,
    WINDOW_NORMAL,
    Bounds,
    BrowserPort,
    KeepAliveExistsError,
    PagePort,
    WindowInfo,
    WindowNotFoundError,
)
from .scraper import SCAN_DEBOUNCE

logger = logging.getLogger(__name__)

KEEPALIVE_URL = "about:blank#chatdock-keepalive"
BINDING_NAME = "__chatdockEmit"
HINT_TIMEOUT_MS = 15000


def _window_info(window_id: int, bounds: Dict[str, Any], url: str = "",
                 target_id: Optional[str] = None) -> WindowInfo:
    return WindowInfo(
        window_id=window_id,
        state=bounds.get("windowState", WINDOW_NORMAL),
        bounds=Bounds(
            left=int(bounds.get("left", 0)),
            top=int(bounds.get("top", 0)),
            width=int(bounds.get("width", 0)),
            height=int(bounds.get("height", 0)),
        ),
        url=url,
        target_id=target_id,
    )


class ChromeBrowser(BrowserPort):
    """Window control through the ``Browser`` and ``Target`` domains."""

    def __init__(self, client: CdpClient):
        self.client = client
        self._window_targets: Dict[int, str] = {}

    async def start(self) -> None:
        await self.client.send("Target.setDiscoverTargets", {"discover": True})

    async def page_targets(self) -> List[Dict[str, Any]]:
        result = await self.client.send("Target.getTargets")
        return [t for t in result.get("targetInfos", []) if t.get("type") == "page"]

    async def window_for_target(self, target_id: str, url: str = "") -> WindowInfo:
        result = await self.client.send("Browser.getWindowForTarget", {"targetId": target_id})
        window_id = result["windowId"]
        self._window_targets[window_id] = target_id
        return _window_info(window_id, result.get("bounds", {}), url, target_id)

    async def find_window(self, url_prefixes: List[str]) -> Optional[WindowInfo]:
        for target in await self.page_targets():
            url = target.get("url", "")
            if any(url.startswith(prefix) for prefix in url_prefixes):
                return await self.window_for_target(target["targetId"], url)
        return None

    async def get_window(self, window_id: int) -> WindowInfo:
        try:
            result = await self.client.send("Browser.getWindowBounds", {"windowId": window_id})
        except CdpError as e:
            raise WindowNotFoundError(window_id) from e
        return _window_info(window_id, result.get("bounds", {}),
                            target_id=self._window_targets.get(window_id))

    async def set_bounds(self, window_id: int, bounds: Bounds) -> None:
        try:
            await self.client.send("Browser.setWindowBounds", {
                "windowId": window_id,
                "bounds": dict(bounds.to_dict(), windowState=WINDOW_NORMAL),
            })
        except CdpError as e:
            raise WindowNotFoundError(window_id) from e

    async def set_minimized(self, window_id: int, minimized: bool) -> None:
        state = WINDOW_MINIMIZED if minimized else WINDOW_NORMAL
        try:
            await self.client.send("Browser.setWindowBounds", {
                "windowId": window_id,
                "bounds": {"windowState": state},
            })
        except CdpError as e:
            raise WindowNotFoundError(window_id) from e

        target_id = self._window_targets.get(window_id)
        if not minimized and target_id:
            try:
                await self.client.send("Target.activateTarget", {"targetId": target_id})
            except CdpError as e:
                logger.debug(f"Could not activate target {target_id}: {e.message}")

    async def create_window(self, url: str, bounds: Optional[Bounds]) -> WindowInfo:
        params: Dict[str, Any] = {"url": url, "newWindow": True}
        if bounds is not None:
            params.update(bounds.to_dict())
        result = await self.client.send("Target.createTarget", params)
        window = await self.window_for_target(result["targetId"], url)
        if bounds is not None and window.bounds != bounds:
            await self.set_bounds(window.window_id, bounds)
            window = await self.get_window(window.window_id)
        return window

    async def create_keepalive(self) -> None:
        result = await self.client.send("Target.getTargets")
        if any(t.get("url") == KEEPALIVE_URL for t in result.get("targetInfos", [])):
            raise KeepAliveExistsError()
        await self.client.send("Target.createTarget", {
            "url": KEEPALIVE_URL,
            "background": True,
            "hidden": True,
        })


class ChromePage(PagePort):
    """The service's page target, attached with a flattened session.

    Page hook payloads (focus, blur, title, notification, conversations,
    hint_dismissed) and the synthetic ``closed`` event are delivered to
    handlers registered with ``on_event``.
    """

    def __init__(self, client: CdpClient, browser: ChromeBrowser, service: ServiceDefinition):
        self.client = client
        self.browser = browser
        self.service = service
        self.target_id: Optional[str] = None
        self.session_id: Optional[str] = None
        self.window_id: Optional[int] = None
        self._handlers: List[Callable[[Dict[str, Any]], None]] = []
        self._attaching = False
        self._tasks: Set[asyncio.Task] = set()

        client.on("Runtime.bindingCalled", self._on_binding)
        client.on("Target.targetInfoChanged", self._on_target_changed)
        client.on("Target.targetCreated", self._on_target_changed)
        client.on("Target.targetDestroyed", self._on_target_destroyed)

    @property
    def attached(self) -> bool:
        return self.session_id is not None

    def on_event(self, handler: Callable[[Dict[str, Any]], None]) -> None:
        self._handlers.append(handler)

    def _emit(self, payload: Dict[str, Any]) -> None:
        for handler in self._handlers:
            handler(payload)

    def hook_source(self) -> str:
        prelude = "window.__chatdockConfig = " + json.dumps({
            "scrape": self.service.scrape_unread,
            "debounceMs": int(SCAN_DEBOUNCE * 1000),
            "hintTimeoutMs": HINT_TIMEOUT_MS,
        }) + ";\n"
        body = resources.files("chatdock.agent").joinpath("page_hooks.js").read_text()
        return prelude + body

    async def attach_existing(self) -> bool:
        for target in await self.browser.page_targets():
            if self.service.matches_url(target.get("url", "")):
                await self.attach(target["targetId"])
                return True
        return False

    async def attach(self, target_id: str) -> None:
        if self._attaching:
            return
        self._attaching = True
        try:
            result = await self.client.send("Target.attachToTarget",
                                            {"targetId": target_id, "flatten": True})
            session_id = result["sessionId"]
            source = self.hook_source()
            await self.client.send("Runtime.enable", session_id=session_id)
            await self.client.send("Page.enable", session_id=session_id)
            await self.client.send("Runtime.addBinding", {"name": BINDING_NAME}, session_id=session_id)
            await self.client.send("Page.addScriptToEvaluateOnNewDocument",
                                   {"source": source}, session_id=session_id)
            await self.client.send("Runtime.evaluate", {"expression": source}, session_id=session_id)
            window = await self.browser.window_for_target(target_id)
        except TransportError as e:
            logger.warning(f"[{self.service.name}] Failed to attach to page {target_id}: {e.message}")
            return
        finally:
            self._attaching = False

        self.target_id = target_id
        self.session_id = session_id
        self.window_id = window.window_id
        logger.info(f"[{self.service.name}] Attached to page {target_id} in window {self.window_id}")

    def _on_binding(self, params: Dict[str, Any], session_id: Optional[str]) -> None:
        if session_id != self.session_id or params.get("name") != BINDING_NAME:
            return
        try:
            payload = json.loads(params.get("payload", "{}"))
        except json.JSONDecodeError:
            logger.debug(f"[{self.service.name}] Ignoring malformed page payload")
            return
        if isinstance(payload, dict):
            self._emit(payload)

    def _on_target_changed(self, params: Dict[str, Any], session_id: Optional[str]) -> None:
        info = params.get("targetInfo", {})
        if self.attached or info.get("type") != "page":
            return
        if self.service.matches_url(info.get("url", "")):
            task = asyncio.get_running_loop().create_task(self.attach(info["targetId"]))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def _on_target_destroyed(self, params: Dict[str, Any], session_id: Optional[str]) -> None:
        if params.get("targetId") != self.target_id:
            return
        window_id = self.window_id
        self.target_id = None
        self.session_id = None
        self.window_id = None
        logger.info(f"[{self.service.name}] Page closed (window {window_id})")
        self._emit({"kind": "closed", "windowId": window_id})

    async def _evaluate(self, expression: str) -> Any:
        if not self.attached:
            return None
        result = await self.client.send("Runtime.evaluate",
                                        {"expression": expression, "returnByValue": True},
                                        session_id=self.session_id)
        return result.get("result", {}).get("value")

    async def get_title(self) -> Optional[str]:
        try:
            return await self._evaluate("document.title")
        except TransportError as e:
            logger.debug(f"[{self.service.name}] Title query failed: {e.message}")
            return None

    async def select_conversation(self, href: str) -> bool:
        try:
            return bool(await self._evaluate(
                f"window.__chatdockSelectConversation({json.dumps(href)})"))
        except TransportError as e:
            logger.debug(f"[{self.service.name}] Conversation select failed: {e.message}")
            return False

    async def navigate(self, url: str) -> None:
        if not self.attached:
            logger.warning(f"[{self.service.name}] No page attached, cannot navigate to {url}")
            return
        try:
            await self.client.send("Page.navigate", {"url": url}, session_id=self.session_id)
        except TransportError as e:
            logger.warning(f"[{self.service.name}] Navigation to {url} failed: {e.message}")

    async def show_first_run_hint(self, text: str) -> None:
        await self._evaluate(f"window.__chatdockShowHint({json.dumps(text)})")
