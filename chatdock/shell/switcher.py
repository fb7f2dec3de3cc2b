"""Window switcher and overview lists, plus the managed-window filter.

The helper answers switcher/overview queries through a ``ShellFacade``.
``ManagedWindowFilter`` wraps the facade's switcher and overview so a
managed window is left out of both while it is minimized. Ordinary
minimized windows keep listing in the switcher. Uninstalling puts the
original strategies back.
"""

import logging
from typing import Callable, Iterable, List, Optional, Set

from .windows import ShellWindow

logger = logging.getLogger(__name__)


class WindowSwitcher:
    """Builds the alt-tab list: every normal window, focused first."""

    def build_list(self, windows: List[ShellWindow]) -> List[ShellWindow]:
        normal = [w for w in windows if w.is_normal]
        return sorted(normal, key=lambda w: not w.focused)


class Overview:
    """Decides which windows appear in the workspace overview."""

    def is_overview_window(self, window: ShellWindow) -> bool:
        return window.is_normal

    def windows(self, windows: List[ShellWindow]) -> List[ShellWindow]:
        return [w for w in windows if self.is_overview_window(w)]


class FilteredSwitcher(WindowSwitcher):
    def __init__(self, inner: WindowSwitcher, hidden: Callable[[ShellWindow], bool]):
        self.inner = inner
        self.hidden = hidden

    def build_list(self, windows: List[ShellWindow]) -> List[ShellWindow]:
        return [w for w in self.inner.build_list(windows) if not self.hidden(w)]


class FilteredOverview(Overview):
    def __init__(self, inner: Overview, hidden: Callable[[ShellWindow], bool]):
        self.inner = inner
        self.hidden = hidden

    def is_overview_window(self, window: ShellWindow) -> bool:
        return self.inner.is_overview_window(window) and not self.hidden(window)


class ShellFacade:
    """The strategies the helper consults for switcher and overview lists."""

    def __init__(self, switcher: Optional[WindowSwitcher] = None, overview: Optional[Overview] = None):
        self.switcher = switcher or WindowSwitcher()
        self.overview = overview or Overview()

    def switcher_windows(self, windows: List[ShellWindow]) -> List[ShellWindow]:
        return self.switcher.build_list(windows)

    def overview_windows(self, windows: List[ShellWindow]) -> List[ShellWindow]:
        return self.overview.windows(windows)


class ManagedWindowFilter:
    """Hides minimized managed windows from switcher and overview."""

    def __init__(self, managed_classes: Iterable[str]):
        self.managed_classes: Set[str] = set(managed_classes)
        self._facade: Optional[ShellFacade] = None
        self._original_switcher: Optional[WindowSwitcher] = None
        self._original_overview: Optional[Overview] = None

    @property
    def installed(self) -> bool:
        return self._facade is not None

    def hides(self, window: ShellWindow) -> bool:
        return window.minimized and window.wm_class in self.managed_classes

    def install(self, facade: ShellFacade) -> None:
        if self._facade is not None:
            logger.debug("Managed window filter already installed")
            return
        self._facade = facade
        self._original_switcher = facade.switcher
        self._original_overview = facade.overview
        facade.switcher = FilteredSwitcher(facade.switcher, self.hides)
        facade.overview = FilteredOverview(facade.overview, self.hides)
        logger.info(f"Filtering minimized windows of: {', '.join(sorted(self.managed_classes))}")

    def uninstall(self) -> None:
        if self._facade is None:
            return
        self._facade.switcher = self._original_switcher
        self._facade.overview = self._original_overview
        self._facade = None
        self._original_switcher = None
        self._original_overview = None
        logger.info("Managed window filter removed")
