"""Tests for daemon state, agent message handling and status publishing."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from chatdock.config import ServiceConfig, load_service_config
from chatdock.daemon.agent_server import AgentServer
from chatdock.daemon.state import DaemonState
from chatdock.daemon.status_publisher import StatusPublisher, status_title
from chatdock.protocol import (
    BadgeUpdate,
    DndChanged,
    HideWindow,
    Notification,
    Ping,
    Ready,
    ShowWindow,
    WindowHidden,
    WindowShown,
)
from chatdock.services import WHATSAPP


@pytest.fixture
def shell():
    shell = AsyncMock()
    shell.focus_window.return_value = True
    shell.hide_window.return_value = True
    return shell


@pytest.fixture
def state(shell, tmp_path):
    return DaemonState(WHATSAPP, ServiceConfig(), shell=shell,
                       config_path=tmp_path / "whatsapp.json")


def _drain(queue):
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


class TestDaemonState:
    @pytest.mark.asyncio
    async def test_show_broadcasts_and_calls_shell(self, state, shell):
        queue = state.subscribe()
        await state.request_show()
        assert state.visible is True
        assert _drain(queue) == [ShowWindow()]
        shell.focus_window.assert_awaited_once_with(WHATSAPP.wm_class)

    @pytest.mark.asyncio
    async def test_hide_broadcasts_and_calls_shell(self, state, shell):
        queue = state.subscribe()
        await state.request_hide()
        assert _drain(queue) == [HideWindow()]
        shell.hide_window.assert_awaited_once_with(WHATSAPP.wm_class)

    @pytest.mark.asyncio
    async def test_toggle(self, state):
        await state.toggle()
        assert state.visible is True
        await state.toggle()
        assert state.visible is False

    @pytest.mark.asyncio
    async def test_broadcast_reaches_every_agent(self, state):
        queues = [state.subscribe(), state.subscribe()]
        await state.request_hide()
        assert all(_drain(q) == [HideWindow()] for q in queues)
        state.unsubscribe(queues[0])
        assert state.agent_count == 1

    @pytest.mark.asyncio
    async def test_set_dnd_persists_and_broadcasts(self, state, tmp_path):
        queue = state.subscribe()
        await state.set_dnd(True)
        await state.set_dnd(True)

        assert state.dnd is True
        assert _drain(queue) == [DndChanged(enabled=True)]
        assert load_service_config("whatsapp", tmp_path / "whatsapp.json").do_not_disturb is True

    def test_dnd_initialized_from_config(self, shell):
        state = DaemonState(WHATSAPP, ServiceConfig(do_not_disturb=True), shell=shell)
        assert state.dnd is True

    def test_reports_are_idempotent(self, state):
        changes = []
        state.add_listener(lambda: changes.append(state.visible))
        assert state.set_visible(True) is True
        assert state.set_visible(True) is False
        state.set_badge(2)
        state.set_badge(2)
        assert changes == [True, True]
        assert state.status() == {"service": "whatsapp", "visible": True, "badge_count": 2, "dnd": False}

    def test_quit(self, state):
        state.request_quit()
        assert state.quit_event.is_set()


class TestAgentMessageHandling:
    @pytest.fixture
    def server(self, state, tmp_path):
        return AgentServer(state, tmp_path / "whatsapp.sock")

    @pytest.mark.asyncio
    async def test_ready_replies_with_current_dnd(self, server, state):
        state.dnd = True
        queue = asyncio.Queue()
        await server.handle_message(Ready(service="whatsapp"), queue)
        assert _drain(queue) == [DndChanged(enabled=True)]

    @pytest.mark.asyncio
    async def test_badge_update(self, server, state):
        await server.handle_message(BadgeUpdate(count=4), asyncio.Queue())
        assert state.badge_count == 4

    @pytest.mark.asyncio
    async def test_visibility_reports_do_not_touch_badge_or_shell(self, server, state, shell):
        state.badge_count = 3
        await server.handle_message(WindowShown(), asyncio.Queue())
        assert state.visible is True
        await server.handle_message(WindowHidden(), asyncio.Queue())
        assert state.visible is False
        assert state.badge_count == 3
        shell.focus_window.assert_not_awaited()
        shell.hide_window.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_minimized_hides_first_shown_window(self, shell, tmp_path):
        state = DaemonState(WHATSAPP, ServiceConfig(), shell=shell, start_minimized=True)
        server = AgentServer(state, tmp_path / "whatsapp.sock")
        queue = state.subscribe()

        await server.handle_message(WindowShown(), queue)
        await server.handle_message(WindowShown(), queue)

        assert _drain(queue) == [HideWindow()]
        assert state.start_minimized is False
        assert state.visible is True

    @pytest.mark.asyncio
    async def test_other_messages_ignored(self, server, state):
        await server.handle_message(Notification(title="a", body="b"), asyncio.Queue())
        await server.handle_message(Ping(), asyncio.Queue())
        assert state.status()["visible"] is False


class TestStatusPublisher:
    def test_title(self):
        assert status_title("WhatsApp", 0) == "WhatsApp"
        assert status_title("WhatsApp", 3) == "WhatsApp (3)"

    def test_writes_on_change(self, state, tmp_path):
        path = tmp_path / "whatsapp-status.json"
        publisher = StatusPublisher(state, path)
        publisher.attach()

        data = json.loads(path.read_text())
        assert data == {
            "service": "whatsapp", "display_name": "WhatsApp", "visible": False,
            "badge_count": 0, "dnd": False, "title": "WhatsApp",
        }

        state.set_badge(3)
        assert json.loads(path.read_text())["title"] == "WhatsApp (3)"

        publisher.remove()
        assert not path.exists()
