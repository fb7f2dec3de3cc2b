"""Session-bus shell helper for sway/i3.

Publishes ``org.chatdock.ShellHelper`` so daemons can focus or minimize
their service window by window-manager class. The compositor applies
focus-stealing prevention to requests from other clients; a command sent
over the compositor's own IPC is not subject to it.
"""

import logging
import signal
from typing import Iterable, List, Optional, Tuple

import i3ipc
from gi.repository import GLib
from pydbus import SessionBus

from ..services import SERVICES
from . import BUS_NAME, INTERFACE, OBJECT_PATH
from .switcher import ManagedWindowFilter, ShellFacade
from .windows import ShellWindow, find_managed_window, snapshot

logger = logging.getLogger(__name__)


class ShellHelper:
    dbus = f"""
    <node>
      <interface name='{INTERFACE}'>
        <method name='FocusWindow'>
          <arg type='s' name='wm_class' direction='in'/>
          <arg type='b' name='found' direction='out'/>
        </method>
        <method name='HideWindow'>
          <arg type='s' name='wm_class' direction='in'/>
          <arg type='b' name='found' direction='out'/>
        </method>
        <method name='SwitcherWindows'>
          <arg type='a(tss)' name='windows' direction='out'/>
        </method>
        <method name='OverviewWindows'>
          <arg type='a(tss)' name='windows' direction='out'/>
        </method>
      </interface>
    </node>
    """

    def __init__(self, conn, facade: Optional[ShellFacade] = None):
        self.conn = conn
        self.facade = facade or ShellFacade()

    def _windows(self) -> List[ShellWindow]:
        return snapshot(self.conn.get_tree())

    def _command(self, command: str) -> bool:
        logger.debug(f"Sway command: {command}")
        replies = self.conn.command(command)
        failed = [r for r in replies if not r.success]
        for reply in failed:
            logger.warning(f"Command failed: {command}: {reply.error}")
        return not failed

    def FocusWindow(self, wm_class: str) -> bool:
        window = find_managed_window(self._windows(), wm_class)
        if window is None:
            logger.info(f"FocusWindow: no window for {wm_class}")
            return False

        if window.minimized:
            self._command(f"[con_id={window.con_id}] scratchpad show")
        self._command(f"[con_id={window.con_id}] focus")
        logger.info(f"Focused {wm_class} (con_id={window.con_id})")
        return True

    def HideWindow(self, wm_class: str) -> bool:
        window = find_managed_window(self._windows(), wm_class)
        if window is None:
            logger.info(f"HideWindow: no window for {wm_class}")
            return False

        if not window.minimized:
            self._command(f"[con_id={window.con_id}] move scratchpad")
        logger.info(f"Minimized {wm_class} (con_id={window.con_id})")
        return True

    def SwitcherWindows(self) -> List[Tuple[int, str, str]]:
        return [w.to_tuple() for w in self.facade.switcher_windows(self._windows())]

    def OverviewWindows(self) -> List[Tuple[int, str, str]]:
        return [w.to_tuple() for w in self.facade.overview_windows(self._windows())]


def managed_classes() -> Iterable[str]:
    return [service.wm_class for service in SERVICES.values()]


def run_shell_helper() -> int:
    """Connect to the compositor, publish on the session bus and block."""
    try:
        conn = i3ipc.Connection()
    except Exception as e:
        logger.error(f"Cannot connect to sway/i3 IPC: {e}")
        return 1

    helper = ShellHelper(conn)
    window_filter = ManagedWindowFilter(managed_classes())
    window_filter.install(helper.facade)

    loop = GLib.MainLoop()

    def on_signal():
        logger.info("Received shutdown signal")
        loop.quit()
        return GLib.SOURCE_REMOVE

    for sig in (signal.SIGINT, signal.SIGTERM):
        GLib.unix_signal_add(GLib.PRIORITY_DEFAULT, sig, on_signal)

    try:
        bus = SessionBus()
        publication = bus.publish(BUS_NAME, (OBJECT_PATH, helper))
    except GLib.Error as e:
        logger.error(f"Cannot publish {BUS_NAME}: {e}")
        window_filter.uninstall()
        return 1

    logger.info(f"Shell helper published as {BUS_NAME} at {OBJECT_PATH}")
    try:
        loop.run()
    finally:
        publication.unpublish()
        window_filter.uninstall()
        logger.info("Shell helper stopped")
    return 0
