"""Window snapshots from the sway/i3 layout tree.

Only leaf windows are reported. Windows in the scratchpad workspace count
as minimized.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)

SCRATCHPAD_WORKSPACE = "__i3_scratch"

# X11 _NET_WM_WINDOW_TYPE values treated as ordinary top-level windows.
# Wayland-native windows carry no type at all.
NORMAL_WINDOW_TYPES = (None, "normal", "unknown")


def get_window_class(con) -> str:
    """Window-manager class of a container.

    Native Wayland windows only have ``app_id``; XWayland and i3 windows
    carry ``window_class`` (or the raw ``window_properties``).
    """
    app_id = getattr(con, "app_id", None)
    if app_id:
        return app_id

    window_class = getattr(con, "window_class", None)
    if window_class:
        return window_class

    props = getattr(con, "window_properties", None) or {}
    return props.get("class", "") or ""


@dataclass(frozen=True)
class ShellWindow:
    """One top-level window as seen by the compositor."""

    con_id: int
    wm_class: str
    title: str
    minimized: bool
    window_type: Optional[str] = None
    focused: bool = False
    workspace: Optional[str] = None

    @property
    def is_normal(self) -> bool:
        return self.window_type in NORMAL_WINDOW_TYPES

    def to_tuple(self):
        """D-Bus ``(tss)`` form."""
        return (self.con_id, self.wm_class, self.title)


def _is_window(con) -> bool:
    if getattr(con, "type", None) not in ("con", "floating_con"):
        return False
    if getattr(con, "nodes", None) or getattr(con, "floating_nodes", None):
        return False
    return bool(getattr(con, "app_id", None) or getattr(con, "window", None)
                or getattr(con, "window_class", None))


def iter_windows(tree) -> Iterator[ShellWindow]:
    """Walk tiled and floating children, tracking the enclosing workspace."""
    stack = [(tree, None)]
    while stack:
        con, workspace = stack.pop()

        if getattr(con, "type", None) == "workspace":
            workspace = con.name

        if _is_window(con):
            yield ShellWindow(
                con_id=con.id,
                wm_class=get_window_class(con),
                title=getattr(con, "name", None) or "",
                minimized=workspace == SCRATCHPAD_WORKSPACE,
                window_type=getattr(con, "window_type", None),
                focused=bool(getattr(con, "focused", False)),
                workspace=workspace,
            )
            continue

        children = list(getattr(con, "nodes", None) or []) + list(getattr(con, "floating_nodes", None) or [])
        for child in reversed(children):
            stack.append((child, workspace))


def snapshot(tree) -> List[ShellWindow]:
    return list(iter_windows(tree))


def find_managed_window(windows: List[ShellWindow], wm_class: str) -> Optional[ShellWindow]:
    """First normal (non-utility) window with ``wm_class``."""
    for window in windows:
        if window.wm_class == wm_class and window.is_normal:
            return window
    logger.debug(f"No normal window with class {wm_class}")
    return None
