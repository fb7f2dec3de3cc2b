"""Shared fixtures for chatdock tests.

Fake browser, page and notifier ports let the window synchronizer and the
notification pipeline run without a browser or a window system.
"""

import asyncio
import json
import shutil
import struct
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from chatdock.agent.channel import MessageChannel
from chatdock.agent.ports import (
    WINDOW_MINIMIZED,
    WINDOW_NORMAL,
    Bounds,
    BrowserPort,
    KeepAliveExistsError,
    PagePort,
    WindowInfo,
    WindowNotFoundError,
)
from chatdock.agent.session import ServiceSession
from chatdock.services import MESSENGER, WHATSAPP


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBrowser(BrowserPort):
    """In-memory browser: windows keyed by id, every call recorded."""

    DEFAULT_BOUNDS = Bounds(0, 0, 800, 600)

    def __init__(self):
        self.windows: Dict[int, WindowInfo] = {}
        self.calls: List[tuple] = []
        self.next_id = 1
        self.keepalive_exists = False
        self.keepalive_attempts = 0
        self.create_error: Optional[Exception] = None

    def add_window(self, url: str, state: str = WINDOW_NORMAL,
                   bounds: Optional[Bounds] = None) -> WindowInfo:
        window = WindowInfo(self.next_id, state, bounds or self.DEFAULT_BOUNDS, url=url)
        self.windows[window.window_id] = window
        self.next_id += 1
        return window

    def close(self, window_id: int) -> None:
        del self.windows[window_id]

    def _require(self, window_id: int) -> WindowInfo:
        if window_id not in self.windows:
            raise WindowNotFoundError(window_id)
        return self.windows[window_id]

    def _replace(self, window: WindowInfo, **changes) -> WindowInfo:
        data = {"window_id": window.window_id, "state": window.state,
                "bounds": window.bounds, "url": window.url}
        data.update(changes)
        updated = WindowInfo(**data)
        self.windows[window.window_id] = updated
        return updated

    async def find_window(self, url_prefixes):
        self.calls.append(("find_window", tuple(url_prefixes)))
        for window in self.windows.values():
            if any(window.url.startswith(p) for p in url_prefixes):
                return window
        return None

    async def get_window(self, window_id):
        self.calls.append(("get_window", window_id))
        return self._require(window_id)

    async def set_bounds(self, window_id, bounds):
        self.calls.append(("set_bounds", window_id, bounds))
        self._replace(self._require(window_id), bounds=bounds)

    async def set_minimized(self, window_id, minimized):
        self.calls.append(("set_minimized", window_id, minimized))
        state = WINDOW_MINIMIZED if minimized else WINDOW_NORMAL
        self._replace(self._require(window_id), state=state)

    async def create_window(self, url, bounds):
        self.calls.append(("create_window", url, bounds))
        if self.create_error is not None:
            raise self.create_error
        return self.add_window(url, bounds=bounds)

    async def create_keepalive(self):
        self.keepalive_attempts += 1
        if self.keepalive_exists:
            raise KeepAliveExistsError()
        self.keepalive_exists = True

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class FakePage(PagePort):
    def __init__(self, title: Optional[str] = None):
        self.title = title
        self.select_result = True
        self.selected: List[str] = []
        self.navigated: List[str] = []
        self.hints: List[str] = []

    async def get_title(self):
        return self.title

    async def select_conversation(self, href):
        self.selected.append(href)
        return self.select_result

    async def navigate(self, url):
        self.navigated.append(url)

    async def show_first_run_hint(self, text):
        self.hints.append(text)


class FakeShown:
    """Stands in for a running notify-send process."""

    def __init__(self, notification_id: int):
        self.id = notification_id
        self.result: Optional[asyncio.Future] = None
        self.closed = False

    async def outcome(self) -> str:
        self.result = asyncio.get_running_loop().create_future()
        return await self.result

    async def close(self) -> None:
        self.closed = True


class FakeNotifier:
    def __init__(self):
        self.shown: List[dict] = []
        self.handles: List[FakeShown] = []
        self.next_id = 100

    async def show(self, title, body, icon_path=None):
        self.shown.append({"title": title, "body": body, "icon": icon_path})
        handle = FakeShown(self.next_id)
        self.next_id += 1
        self.handles.append(handle)
        return handle


class RecordingWriter:
    """StreamWriter stand-in that decodes every frame written to it."""

    def __init__(self):
        self.messages: List[dict] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        (length,) = struct.unpack("<I", data[:4])
        assert length == len(data) - 4
        self.messages.append(json.loads(data[4:].decode("utf-8")))

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None

    def types(self) -> List[str]:
        return [m["type"] for m in self.messages]


@pytest.fixture
def sock_dir():
    """Short directory for unix sockets (tmp_path can exceed the path limit)."""
    path = Path(tempfile.mkdtemp(prefix="chatdock-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session(clock):
    """WhatsApp session whose clock starts at the fixture's time."""
    return ServiceSession(service=WHATSAPP, clock=clock)


@pytest.fixture
def messenger_session(clock):
    return ServiceSession(service=MESSENGER, clock=clock)


@pytest.fixture
def browser():
    return FakeBrowser()


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def writer():
    return RecordingWriter()


@pytest.fixture
def connected_channel(session, writer, tmp_path):
    """A MessageChannel that believes it is connected and records frames."""
    channel = MessageChannel(session, tmp_path / "whatsapp.sock")
    channel._writer = writer
    return channel
