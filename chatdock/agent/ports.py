"""Browser-facing interfaces used by the agent.

The window synchronizer, keep-alive controller and notification pipeline
only talk to these abstract ports, so they run against fakes in tests and
against the DevTools implementation (chatdock.agent.chrome) in production.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import ChatdockError, ErrorCode

WINDOW_NORMAL = "normal"
WINDOW_MINIMIZED = "minimized"


@dataclass(frozen=True)
class Bounds:
    """Window position and size in screen pixels."""

    left: int
    top: int
    width: int
    height: int

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def to_dict(self) -> Dict[str, int]:
        return {"left": self.left, "top": self.top, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bounds":
        return cls(
            left=int(data["left"]),
            top=int(data["top"]),
            width=int(data["width"]),
            height=int(data["height"]),
        )


@dataclass(frozen=True)
class WindowInfo:
    """Snapshot of one browser window as reported by the browser."""

    window_id: int
    state: str
    bounds: Bounds
    url: str = ""
    target_id: Optional[str] = None

    @property
    def visible(self) -> bool:
        # Occlusion is not observable; only minimization counts as hidden.
        return self.state != WINDOW_MINIMIZED


class WindowNotFoundError(ChatdockError):
    """The window handle no longer refers to a live window."""

    def __init__(self, window_id: Any):
        super().__init__(
            code=ErrorCode.WINDOW_NOT_FOUND,
            message=f"Browser window {window_id} not found",
            context={"window_id": window_id},
        )


class KeepAliveExistsError(ChatdockError):
    """A keep-alive surface is already open in this browser process."""

    def __init__(self):
        super().__init__(
            code=ErrorCode.KEEPALIVE_EXISTS,
            message="Keep-alive surface already exists",
        )


class BrowserPort(ABC):
    """Window-level operations on the browser process."""

    @abstractmethod
    async def find_window(self, url_prefixes: List[str]) -> Optional[WindowInfo]:
        """Return the first window whose page URL starts with one of the prefixes."""

    @abstractmethod
    async def get_window(self, window_id: int) -> WindowInfo:
        """Raises WindowNotFoundError for a stale handle."""

    @abstractmethod
    async def set_bounds(self, window_id: int, bounds: Bounds) -> None:
        """Raises WindowNotFoundError for a stale handle."""

    @abstractmethod
    async def set_minimized(self, window_id: int, minimized: bool) -> None:
        """Minimize, or restore to normal and focus.

        Raises WindowNotFoundError for a stale handle.
        """

    @abstractmethod
    async def create_window(self, url: str, bounds: Optional[Bounds]) -> WindowInfo:
        """Open a new focused window at ``bounds`` (browser default when None)."""

    @abstractmethod
    async def create_keepalive(self) -> None:
        """Open the invisible anchor surface.

        Raises KeepAliveExistsError when one is already open.
        """


class PagePort(ABC):
    """Page-level operations on the service's document."""

    @abstractmethod
    async def get_title(self) -> Optional[str]:
        """Current document title, None when no page is attached."""

    @abstractmethod
    async def select_conversation(self, href: str) -> bool:
        """Activate the in-page link for ``href``. False when no such link exists."""

    @abstractmethod
    async def navigate(self, url: str) -> None:
        """Full navigation of the service page."""

    @abstractmethod
    async def show_first_run_hint(self, text: str) -> None:
        """Render the one-time usage hint inside the page."""
