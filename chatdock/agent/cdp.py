"""Minimal asyncio Chrome DevTools Protocol client over aiohttp websockets.

Connects to the browser-level endpoint advertised by ``/json/version`` and
multiplexes page sessions over it with flattened ``sessionId`` routing.
"""

import asyncio
import itertools
import json
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from ..errors import ErrorCode, TransportError

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 10.0


class CdpError(TransportError):
    """The browser answered a command with an error object."""

    def __init__(self, method: str, error: Dict[str, Any]):
        super().__init__(f"{method} failed: {error.get('message', error)}",
                         code=ErrorCode.DEVTOOLS_UNAVAILABLE)
        self.method = method
        self.cdp_code = error.get("code")
        self.cdp_message = error.get("message", "")


class CdpClient:
    """Browser-level DevTools connection."""

    def __init__(self, devtools_url: str, http: aiohttp.ClientSession,
                 timeout: float = COMMAND_TIMEOUT):
        self.devtools_url = devtools_url.rstrip("/")
        self.http = http
        self.timeout = timeout
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._handlers: Dict[str, List[Callable[[Dict[str, Any], Optional[str]], None]]] = defaultdict(list)
        self._reader_task: Optional[asyncio.Task] = None
        self.closed = asyncio.Event()

    async def browser_ws_url(self) -> str:
        try:
            async with self.http.get(f"{self.devtools_url}/json/version",
                                     timeout=aiohttp.ClientTimeout(total=5)) as resp:
                info = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransportError(
                f"DevTools endpoint {self.devtools_url} unavailable: {e}",
                code=ErrorCode.DEVTOOLS_UNAVAILABLE,
            ) from e
        url = info.get("webSocketDebuggerUrl")
        if not url:
            raise TransportError("Browser did not advertise webSocketDebuggerUrl",
                                 code=ErrorCode.DEVTOOLS_UNAVAILABLE)
        logger.debug(f"Browser: {info.get('Browser', 'unknown')}")
        return url

    async def connect(self) -> None:
        url = await self.browser_ws_url()
        try:
            self._ws = await self.http.ws_connect(url, max_msg_size=0)
        except aiohttp.ClientError as e:
            raise TransportError(f"DevTools websocket connect failed: {e}",
                                 code=ErrorCode.DEVTOOLS_UNAVAILABLE) from e
        self.closed.clear()
        self._reader_task = asyncio.create_task(self._reader())
        logger.info(f"Attached to browser DevTools at {self.devtools_url}")

    def on(self, event: str, handler: Callable[[Dict[str, Any], Optional[str]], None]) -> None:
        """Register ``handler(params, session_id)`` for a protocol event."""
        self._handlers[event].append(handler)

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None,
                   session_id: Optional[str] = None) -> Dict[str, Any]:
        """Run one command and return its result.

        Raises:
            CdpError: The browser rejected the command
            TransportError: Timeout or a closed connection
        """
        if self._ws is None or self._ws.closed:
            raise TransportError("DevTools connection is closed")

        message_id = next(self._ids)
        payload: Dict[str, Any] = {"id": message_id, "method": method}
        if params:
            payload["params"] = params
        if session_id:
            payload["sessionId"] = session_id

        future = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future
        try:
            await self._ws.send_str(json.dumps(payload))
            return await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"{method} timed out after {self.timeout:g}s",
                                 code=ErrorCode.DEVTOOLS_TIMEOUT) from e
        except (aiohttp.ClientError, ConnectionError) as e:
            raise TransportError(f"{method} could not be sent: {e}") from e
        finally:
            self._pending.pop(message_id, None)

    async def _reader(self) -> None:
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(json.loads(msg.data))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(f"DevTools websocket error: {self._ws.exception()}")
                    break
        finally:
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(TransportError("DevTools connection lost"))
            self._pending.clear()
            self.closed.set()
            logger.warning("DevTools connection closed")

    def _dispatch(self, data: Dict[str, Any]) -> None:
        if "id" in data:
            future = self._pending.get(data["id"])
            if future is None or future.done():
                return
            if "error" in data:
                future.set_exception(CdpError(data.get("method", "command"), data["error"]))
            else:
                future.set_result(data.get("result", {}))
            return

        method = data.get("method")
        for handler in self._handlers.get(method, []):
            try:
                handler(data.get("params", {}), data.get("sessionId"))
            except Exception as e:
                logger.error(f"DevTools handler for {method} failed: {e}", exc_info=True)

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._reader_task is not None:
            await self._reader_task
