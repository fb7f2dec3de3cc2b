"""Daemon and agent talking over real unix sockets.

The browser and page are fakes; everything between the agent's
synchronizer and the daemon's control socket is the real code.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from chatdock.agent.channel import MessageChannel
from chatdock.agent.keepalive import KeepAliveController
from chatdock.agent.runtime import ServiceAgent
from chatdock.agent.storage import AgentStore
from chatdock.config import GlobalConfig, ServiceConfig
from chatdock.daemon.control_client import send_request
from chatdock.daemon.daemon import ServiceDaemon, main_async
from chatdock.services import WHATSAPP


async def wait_until(predicate, timeout=3.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_poll(), timeout)


def _daemon(sock_dir, tmp_path, shell):
    return ServiceDaemon(
        WHATSAPP,
        GlobalConfig(),
        ServiceConfig(),
        shell=shell,
        agent_socket=sock_dir / "whatsapp.sock",
        control_socket=sock_dir / "whatsapp-control.sock",
        status_file=sock_dir / "whatsapp-status.json",
        config_path=tmp_path / "whatsapp.json",
    )


@pytest.fixture
def shell():
    return AsyncMock()


@pytest.fixture
def store(tmp_path):
    store = AgentStore(tmp_path / "agent-state.json")
    store.dismiss_first_run("whatsapp")
    return store


class TestDaemonAgent:
    @pytest.mark.asyncio
    async def test_full_round_trip(self, sock_dir, tmp_path, shell, session, browser, page, store, notifier):
        daemon = _daemon(sock_dir, tmp_path, shell)
        await daemon.initialize()

        channel = MessageChannel(session, sock_dir / "whatsapp.sock", reconnect_delay=0.05)
        agent = ServiceAgent(session, browser, page, KeepAliveController(browser), store, notifier,
                             channel=channel)
        await agent.startup()
        tasks = [asyncio.create_task(channel.run()), asyncio.create_task(agent.sync.run())]
        control = daemon.ipc_server.socket_path

        try:
            await wait_until(lambda: daemon.state.agent_count == 1)

            # DND set through the control socket reaches the agent.
            await send_request(control, "set_dnd", {"enabled": True})
            await wait_until(lambda: session.dnd is True)

            # Show creates the window; the agent reports it shown.
            await send_request(control, "show")
            await wait_until(lambda: session.last_emitted_visible is True)
            assert browser.count("create_window") == 1
            assert daemon.state.visible is True
            shell.focus_window.assert_awaited_with(WHATSAPP.wm_class)

            # User closes the window.
            window_id = agent.sync.state.handle
            browser.close(window_id)
            agent.handle_page_event({"kind": "closed", "windowId": window_id}, None)
            await wait_until(lambda: daemon.state.visible is False)
            assert browser.keepalive_exists

            # Badge from the page title lands in the status file.
            agent.handle_page_event({"kind": "title", "title": "(3) WhatsApp"}, None)
            await wait_until(lambda: daemon.state.badge_count == 3)
            status = json.loads(daemon.publisher.path.read_text())
            assert status["title"] == "WhatsApp (3)"
            assert status["dnd"] is True
        finally:
            for task in tasks:
                task.cancel()
            await channel._close()
            await agent.close()
            await daemon.shutdown()

    @pytest.mark.asyncio
    async def test_agent_reconnect_gets_dnd_and_resends_state(
        self, sock_dir, tmp_path, shell, session, browser, page, store, notifier
    ):
        daemon = _daemon(sock_dir, tmp_path, shell)
        daemon.state.dnd = True
        await daemon.initialize()

        channel = MessageChannel(session, sock_dir / "whatsapp.sock", reconnect_delay=0.05)
        agent = ServiceAgent(session, browser, page, KeepAliveController(browser), store, notifier,
                             channel=channel)
        browser.add_window(WHATSAPP.url)
        await agent.startup()
        tasks = [asyncio.create_task(channel.run()), asyncio.create_task(agent.sync.run())]

        try:
            # ready -> dnd_changed; ChannelConnected -> window_shown.
            await wait_until(lambda: session.dnd is True and daemon.state.visible is True)

            # Daemon restarts; the agent reconnects and re-announces.
            await daemon.shutdown()
            await wait_until(lambda: not channel.connected)
            daemon = _daemon(sock_dir, tmp_path, shell)
            await daemon.initialize()
            await wait_until(lambda: daemon.state.agent_count == 1 and daemon.state.visible is True)
        finally:
            for task in tasks:
                task.cancel()
            await channel._close()
            await agent.close()
            await daemon.shutdown()

    @pytest.mark.asyncio
    async def test_second_daemon_asks_first_to_show(self, sock_dir, tmp_path, shell):
        first = _daemon(sock_dir, tmp_path, shell)
        await first.initialize()
        try:
            second = _daemon(sock_dir, tmp_path, AsyncMock())
            assert await main_async(second) == 0
            assert first.state.visible is True
            shell.focus_window.assert_awaited_once_with(WHATSAPP.wm_class)
        finally:
            await first.shutdown()

    @pytest.mark.asyncio
    async def test_quit_over_control_socket_stops_daemon(self, sock_dir, tmp_path, shell, monkeypatch):
        daemon = _daemon(sock_dir, tmp_path, shell)
        monkeypatch.setattr(daemon, "setup_signal_handlers", lambda: None)

        runner = asyncio.create_task(main_async(daemon))
        await wait_until(lambda: daemon.ipc_server.socket_path.exists())
        await send_request(daemon.ipc_server.socket_path, "quit")

        assert await asyncio.wait_for(runner, 3.0) == 0
        assert not daemon.ipc_server.socket_path.exists()
        assert not daemon.publisher.path.exists()
