"""Per-service daemon: authoritative visibility intent, badge and DND."""

from .daemon import ServiceDaemon, main_async
from .state import DaemonState

__all__ = ["ServiceDaemon", "DaemonState", "main_async"]
