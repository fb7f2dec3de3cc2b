"""Per-service session context shared by the agent's components."""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..services import ServiceDefinition
from .window_sync import SyncState


@dataclass
class ServiceSession:
    """All mutable agent state for one messaging service.

    One instance is created per service at agent startup and passed
    explicitly to the channel, window synchronizer and notification
    pipeline. ``dnd`` mirrors the daemon's authoritative flag.
    """

    service: ServiceDefinition
    dnd: bool = False
    window: SyncState = field(default_factory=SyncState)
    badge_count: int = 0
    last_emitted_visible: Optional[bool] = None
    clock: Callable[[], float] = time.monotonic
    started_at: float = field(default=0.0)

    def __post_init__(self):
        if not self.started_at:
            self.started_at = self.clock()

    @property
    def name(self) -> str:
        return self.service.name

    @property
    def visibility(self) -> str:
        """'visible', 'hidden' or 'unknown' from the synchronizer's view."""
        visible = self.window.visible
        if visible is None:
            return "unknown"
        return "visible" if visible else "hidden"

    def elapsed(self) -> float:
        """Seconds since the session was created."""
        return self.clock() - self.started_at
