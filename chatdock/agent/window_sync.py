"""Window state synchronizer for one managed browser window.

Every external signal (daemon request, browser event, poll result, result
of a previously issued window operation) is normalized into a typed event
and fed to ``transition``, which returns the next ``SyncState`` and a list
of effects. ``WindowSynchronizer`` executes effects against the browser
port in order and feeds their results back as events before the next
queued event is taken, so requests for one session are serialized.

States: NO_WINDOW -> NORMAL -> MINIMIZED, with a destroyed window going
straight back to NO_WINDOW. ``focused`` is only meaningful in NORMAL.

Results that refer to a window other than the current handle are stale
and dropped.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple, Union

from ..errors import TransportError
from .ports import WINDOW_NORMAL, Bounds, BrowserPort, WindowInfo, WindowNotFoundError

if TYPE_CHECKING:
    from .channel import MessageChannel
    from .keepalive import KeepAliveController
    from .session import ServiceSession

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5


class Phase(Enum):
    NO_WINDOW = "no_window"
    NORMAL = "normal"
    MINIMIZED = "minimized"


@dataclass(frozen=True)
class SyncState:
    phase: Phase = Phase.NO_WINDOW
    handle: Optional[int] = None
    focused: bool = False
    saved_bounds: Optional[Bounds] = None
    last_polled_visible: Optional[bool] = None
    observed: bool = False

    @property
    def visible(self) -> Optional[bool]:
        if not self.observed:
            return None
        return self.phase == Phase.NORMAL


# Events -------------------------------------------------------------------

@dataclass(frozen=True)
class WindowDiscovered:
    """Startup scan found the service's window."""
    window: WindowInfo


@dataclass(frozen=True)
class HideRequested:
    pass


@dataclass(frozen=True)
class ShowRequested:
    pass


@dataclass(frozen=True)
class FocusGained:
    window_id: int


@dataclass(frozen=True)
class FocusLost:
    window_id: int


@dataclass(frozen=True)
class WindowRemoved:
    window_id: int


@dataclass(frozen=True)
class PollDue:
    pass


@dataclass(frozen=True)
class Polled:
    window: WindowInfo


@dataclass(frozen=True)
class PollFailed:
    window_id: int


@dataclass(frozen=True)
class StateApplied:
    window_id: int
    minimized: bool


@dataclass(frozen=True)
class StateFailed:
    window_id: int
    minimized: bool


@dataclass(frozen=True)
class WindowCreated:
    window: WindowInfo


@dataclass(frozen=True)
class CreateFailed:
    reason: str


@dataclass(frozen=True)
class ChannelConnected:
    """The daemon (re)connected; it must learn the current visibility."""


Event = Union[
    WindowDiscovered, HideRequested, ShowRequested, FocusGained,
    FocusLost, WindowRemoved, PollDue, Polled, PollFailed, StateApplied,
    StateFailed, WindowCreated, CreateFailed, ChannelConnected,
]


# Effects ------------------------------------------------------------------

@dataclass(frozen=True)
class ApplyBounds:
    window_id: int
    bounds: Bounds


@dataclass(frozen=True)
class PersistBounds:
    bounds: Bounds


@dataclass(frozen=True)
class SetMinimized:
    window_id: int
    minimized: bool


@dataclass(frozen=True)
class CreateWindow:
    bounds: Optional[Bounds]


@dataclass(frozen=True)
class QueryWindow:
    window_id: int


@dataclass(frozen=True)
class EnsureKeepAlive:
    pass


@dataclass(frozen=True)
class EmitVisibility:
    visible: bool


Effect = Union[ApplyBounds, PersistBounds, SetMinimized, CreateWindow, QueryWindow,
               EnsureKeepAlive, EmitVisibility]


def _track_bounds(state: SyncState, window_state: str, bounds: Bounds) -> Tuple[SyncState, List[Effect]]:
    if window_state != WINDOW_NORMAL or bounds.is_empty or bounds == state.saved_bounds:
        return state, []
    return replace(state, saved_bounds=bounds), [PersistBounds(bounds)]


def _drop_window(state: SyncState) -> SyncState:
    return replace(
        state,
        phase=Phase.NO_WINDOW,
        handle=None,
        focused=False,
        last_polled_visible=None,
        observed=True,
    )


def transition(state: SyncState, event: Event) -> Tuple[SyncState, List[Effect]]:
    """Compute the next state and the effects to run for one event."""
    if isinstance(event, WindowDiscovered):
        if state.handle is not None:
            return state, []
        window = event.window
        state = replace(
            state,
            phase=Phase.NORMAL if window.visible else Phase.MINIMIZED,
            handle=window.window_id,
            focused=False,
            last_polled_visible=None,
            observed=True,
        )
        # Stored bounds win over the window's spawn-time defaults.
        if state.saved_bounds is not None:
            return state, [ApplyBounds(window.window_id, state.saved_bounds)]
        return _track_bounds(state, window.state, window.bounds)

    if isinstance(event, HideRequested):
        if state.handle is None:
            return state, [EmitVisibility(False)]
        return state, [SetMinimized(state.handle, True)]

    if isinstance(event, ShowRequested):
        if state.handle is None:
            return state, [CreateWindow(state.saved_bounds)]
        return state, [SetMinimized(state.handle, False)]

    if isinstance(event, StateApplied):
        if event.window_id != state.handle:
            return state, []
        if event.minimized:
            return replace(state, phase=Phase.MINIMIZED, focused=False), [EmitVisibility(False)]
        return replace(state, phase=Phase.NORMAL, focused=True), [EmitVisibility(True)]

    if isinstance(event, StateFailed):
        if event.window_id != state.handle:
            return state, []
        state = _drop_window(state)
        if event.minimized:
            # A window that cannot be minimized is gone.
            return state, [EnsureKeepAlive(), EmitVisibility(False)]
        return state, [CreateWindow(state.saved_bounds)]

    if isinstance(event, WindowCreated):
        window = event.window
        state = replace(
            state,
            phase=Phase.NORMAL,
            handle=window.window_id,
            focused=True,
            last_polled_visible=None,
            observed=True,
        )
        return state, [EmitVisibility(True)]

    if isinstance(event, CreateFailed):
        return state, [EmitVisibility(False)]

    if isinstance(event, (WindowRemoved, PollFailed)):
        if event.window_id != state.handle:
            return state, []
        return _drop_window(state), [EnsureKeepAlive(), EmitVisibility(False)]

    if isinstance(event, FocusGained):
        if event.window_id != state.handle:
            return state, []
        return replace(state, phase=Phase.NORMAL, focused=True), [EmitVisibility(True)]

    if isinstance(event, FocusLost):
        if event.window_id != state.handle:
            return state, []
        return replace(state, focused=False), []

    if isinstance(event, ChannelConnected):
        state = replace(state, last_polled_visible=None)
        if state.visible is None:
            return state, []
        return state, [EmitVisibility(state.visible)]

    if isinstance(event, PollDue):
        if state.handle is None:
            return state, []
        return state, [QueryWindow(state.handle)]

    if isinstance(event, Polled):
        window = event.window
        if window.window_id != state.handle:
            return state, []
        visible = window.visible
        state = replace(
            state,
            phase=Phase.NORMAL if visible else Phase.MINIMIZED,
            focused=state.focused and visible,
        )
        effects: List[Effect] = []
        if visible != state.last_polled_visible:
            state = replace(state, last_polled_visible=visible)
            effects.append(EmitVisibility(visible))
        state, bound_effects = _track_bounds(state, window.state, window.bounds)
        return state, effects + bound_effects

    raise TypeError(f"Unhandled window event: {event!r}")


class WindowSynchronizer:
    """Runs the transition function for one ServiceSession.

    Effects are executed against the browser port; each effect that has a
    result is turned back into an event and processed before the next
    event is taken from the queue.
    """

    def __init__(
        self,
        session: "ServiceSession",
        browser: BrowserPort,
        keepalive: "KeepAliveController",
        channel: "MessageChannel",
        persist_bounds: Callable[[Bounds], None],
    ):
        self.session = session
        self.browser = browser
        self.keepalive = keepalive
        self.channel = channel
        self.persist_bounds = persist_bounds
        self._queue: asyncio.Queue = asyncio.Queue()
        self._poll_pending = False

    @property
    def state(self) -> SyncState:
        return self.session.window

    def submit(self, event: Event) -> None:
        """Queue an event; safe to call from callbacks."""
        self._queue.put_nowait(event)

    def request_poll(self) -> None:
        """Queue a poll if a window is tracked.

        Polling continues while the daemon is unreachable so bounds keep
        being persisted; visibility reports made meanwhile are dropped by
        the channel and re-sent on ChannelConnected.
        """
        if self._poll_pending or self.state.handle is None:
            return
        self._poll_pending = True
        self.submit(PollDue())

    async def run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.dispatch(event)
            except Exception as e:
                logger.error(f"[{self.session.name}] Failed to process {event!r}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def poll_loop(self) -> None:
        while True:
            await asyncio.sleep(POLL_INTERVAL)
            self.request_poll()

    async def dispatch(self, event: Event) -> None:
        """Process one event and every result event its effects produce."""
        pending: List[Event] = [event]
        while pending:
            current = pending.pop(0)
            if isinstance(current, PollDue):
                self._poll_pending = False
            new_state, effects = transition(self.session.window, current)
            if new_state != self.session.window:
                logger.debug(f"[{self.session.name}] {type(current).__name__}: "
                             f"{self.session.window.phase.value} -> {new_state.phase.value}")
            self.session.window = new_state
            for effect in effects:
                result = await self._execute(effect)
                if result is not None:
                    pending.append(result)

    async def _execute(self, effect: Effect) -> Optional[Event]:
        name = self.session.name

        if isinstance(effect, EmitVisibility):
            self.channel.report_visibility(effect.visible)
            return None

        if isinstance(effect, PersistBounds):
            self.persist_bounds(effect.bounds)
            return None

        if isinstance(effect, EnsureKeepAlive):
            await self.keepalive.ensure_alive()
            return None

        if isinstance(effect, ApplyBounds):
            try:
                await self.browser.set_bounds(effect.window_id, effect.bounds)
                logger.info(f"[{name}] Restored window bounds {effect.bounds.to_dict()}")
            except (WindowNotFoundError, TransportError) as e:
                logger.warning(f"[{name}] Could not restore bounds of window {effect.window_id}: {e.message}")
                return WindowRemoved(effect.window_id)
            return None

        if isinstance(effect, SetMinimized):
            try:
                await self.browser.set_minimized(effect.window_id, effect.minimized)
            except (WindowNotFoundError, TransportError) as e:
                logger.warning(f"[{name}] {e.message}")
                return StateFailed(effect.window_id, effect.minimized)
            logger.info(f"[{name}] Window {'minimized' if effect.minimized else 'restored and focused'}")
            return StateApplied(effect.window_id, effect.minimized)

        if isinstance(effect, CreateWindow):
            try:
                window = await self.browser.create_window(self.session.service.url, effect.bounds)
            except Exception as e:
                logger.error(f"[{name}] Failed to create app window: {e}")
                return CreateFailed(str(e))
            logger.info(f"[{name}] Created new app window {window.window_id}")
            return WindowCreated(window)

        if isinstance(effect, QueryWindow):
            try:
                window = await self.browser.get_window(effect.window_id)
            except (WindowNotFoundError, TransportError) as e:
                logger.debug(f"[{name}] Poll of window {effect.window_id} failed: {e.message}")
                return PollFailed(effect.window_id)
            return Polled(window)

        raise TypeError(f"Unhandled window effect: {effect!r}")
