"""Publishes daemon status to a JSON file for bars and tray frontends."""

import logging
from pathlib import Path
from typing import Any, Dict

from ..config import atomic_write_json
from .state import DaemonState

logger = logging.getLogger(__name__)


def status_title(display_name: str, badge_count: int) -> str:
    if badge_count > 0:
        return f"{display_name} ({badge_count})"
    return display_name


class StatusPublisher:
    """Rewrites ``<service>-status.json`` whenever DaemonState changes."""

    def __init__(self, state: DaemonState, path: Path):
        self.state = state
        self.path = path
        self._last: Dict[str, Any] = {}

    def snapshot(self) -> Dict[str, Any]:
        status = self.state.status()
        status["display_name"] = self.state.service.display_name
        status["title"] = status_title(self.state.service.display_name, self.state.badge_count)
        return status

    def publish(self) -> None:
        snapshot = self.snapshot()
        if snapshot == self._last:
            return
        try:
            atomic_write_json(self.path, snapshot)
        except OSError as e:
            logger.warning(f"Failed to write status file {self.path}: {e}")
            return
        self._last = snapshot
        logger.debug(f"Published status: {snapshot['title']} visible={snapshot['visible']}")

    def attach(self) -> None:
        self.state.add_listener(self.publish)
        self.publish()

    def remove(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
