"""Persistent agent state: window bounds and the first-run hint flag.

State file schema ($XDG_DATA_HOME/chatdock/agent-state.json):
{
    "version": "1.0",
    "services": {
        "whatsapp": {
            "bounds": {"left": 100, "top": 80, "width": 1200, "height": 800},
            "first_run_dismissed": true
        }
    }
}

Absent services or keys mean "no saved value".
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from ..config import atomic_write_json, data_dir
from .ports import Bounds

logger = logging.getLogger(__name__)

STATE_VERSION = "1.0"


def default_state_path() -> Path:
    return data_dir() / "agent-state.json"


class AgentStore:
    """Keyed by service name; one file shared by all sessions of an agent."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path or default_state_path()
        self.services: Dict[str, Dict[str, Any]] = {}

    def load(self) -> None:
        if not self.path.exists():
            logger.debug(f"No agent state at {self.path}")
            return

        try:
            with self.path.open("r") as f:
                data = json.load(f)
            services = data.get("services", {})
            if not isinstance(services, dict):
                raise ValueError("'services' is not an object")
            self.services = services
            logger.info(f"Loaded agent state for {len(self.services)} service(s)")
        except (json.JSONDecodeError, ValueError, AttributeError) as e:
            logger.error(f"Failed to load {self.path}: {e}")
            logger.info("Backing up corrupted file and reinitializing")
            self.path.rename(self.path.with_suffix(".json.bak"))
            self.services = {}

    def save(self) -> None:
        data = {"version": STATE_VERSION, "services": self.services}
        try:
            atomic_write_json(self.path, data)
        except OSError as e:
            logger.error(f"Failed to save agent state: {e}")

    def _entry(self, service: str) -> Dict[str, Any]:
        return self.services.setdefault(service, {})

    def get_bounds(self, service: str) -> Optional[Bounds]:
        raw = self.services.get(service, {}).get("bounds")
        if not raw:
            return None
        try:
            return Bounds.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Ignoring malformed saved bounds for {service}: {raw!r}")
            return None

    def set_bounds(self, service: str, bounds: Bounds) -> None:
        self._entry(service)["bounds"] = bounds.to_dict()
        self.save()

    def first_run_dismissed(self, service: str) -> bool:
        return bool(self.services.get(service, {}).get("first_run_dismissed", False))

    def dismiss_first_run(self, service: str) -> None:
        self._entry(service)["first_run_dismissed"] = True
        self.save()
