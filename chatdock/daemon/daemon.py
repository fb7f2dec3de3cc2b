"""Per-service daemon entry point with systemd integration.

One daemon runs per service. It owns the agent socket, the JSON-RPC
control socket and the published status file, and exits when asked to
quit or on SIGTERM/SIGINT.
"""

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Optional

try:
    from systemd import daemon as sd_daemon
    SYSTEMD_AVAILABLE = True
except ImportError:
    SYSTEMD_AVAILABLE = False

from ..config import (
    GlobalConfig,
    ServiceConfig,
    agent_socket_path,
    control_socket_path,
    status_file_path,
)
from ..logging_setup import _suppress_stderr_fd
from ..services import ServiceDefinition
from .agent_server import AgentServer
from .control_client import daemon_running, send_request
from .ipc_server import IPCServer
from .shell_client import ShellClient
from .state import DaemonState
from .status_publisher import StatusPublisher

logger = logging.getLogger(__name__)


class DaemonHealthMonitor:
    """Manages systemd readiness and stopping notifications."""

    def notify_ready(self) -> None:
        """Send READY=1 signal to systemd."""
        if SYSTEMD_AVAILABLE:
            with _suppress_stderr_fd():
                sd_daemon.notify("READY=1")
            logger.info("Sent READY=1 to systemd")
        else:
            logger.debug("Systemd not available, skipping READY notification")

    def notify_stopping(self) -> None:
        """Send STOPPING=1 signal to systemd."""
        if SYSTEMD_AVAILABLE:
            with _suppress_stderr_fd():
                sd_daemon.notify("STOPPING=1")
            logger.info("Sent STOPPING=1 to systemd")


class ServiceDaemon:
    """Daemon for one chat service."""

    def __init__(
        self,
        service: ServiceDefinition,
        global_config: GlobalConfig,
        service_config: ServiceConfig,
        start_minimized: bool = False,
        shell=None,
        agent_socket: Optional[Path] = None,
        control_socket: Optional[Path] = None,
        status_file: Optional[Path] = None,
        config_path: Optional[Path] = None,
    ):
        self.service = service
        self.global_config = global_config

        if shell is None and global_config.shell_helper_enabled:
            shell = ShellClient()

        self.state = DaemonState(
            service,
            service_config,
            shell=shell,
            start_minimized=start_minimized,
            config_path=config_path,
        )
        self.agent_server = AgentServer(self.state, agent_socket or agent_socket_path(service.name))
        self.ipc_server = IPCServer(self.state, control_socket or control_socket_path(service.name))
        self.publisher = StatusPublisher(self.state, status_file or status_file_path(service.name))
        self.health_monitor = DaemonHealthMonitor()

    @property
    def shutdown_event(self) -> asyncio.Event:
        return self.state.quit_event

    async def initialize(self) -> None:
        logger.info(f"Starting {self.service.display_name} daemon")
        self.publisher.attach()
        await self.ipc_server.start()
        await self.agent_server.start()
        if self.state.start_minimized:
            logger.info("Will hide the first window the agent reports")
        self.health_monitor.notify_ready()

    async def shutdown(self) -> None:
        logger.info("Shutting down daemon...")
        self.health_monitor.notify_stopping()

        for name, server in (("agent server", self.agent_server), ("IPC server", self.ipc_server)):
            try:
                await asyncio.wait_for(server.stop(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning(f"{name} shutdown timed out after 5s (continuing)")
            except OSError as e:
                logger.error(f"Error stopping {name}: {e}")

        self.publisher.remove()
        logger.info("Daemon shutdown complete")

    def setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def shutdown_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown...")
            loop.call_soon_threadsafe(self.shutdown_event.set)

        signal.signal(signal.SIGTERM, shutdown_handler)
        signal.signal(signal.SIGINT, shutdown_handler)

    async def run(self) -> None:
        await self.shutdown_event.wait()


async def main_async(daemon: ServiceDaemon) -> int:
    """Run ``daemon`` unless another instance already serves the service.

    Returns:
        Exit code (0 = success, non-zero = error)
    """
    control_socket = daemon.ipc_server.socket_path
    if await daemon_running(control_socket):
        logger.info(f"{daemon.service.display_name} daemon already running, asking it to show")
        try:
            await send_request(control_socket, "show")
        except (ConnectionError, RuntimeError) as e:
            logger.error(f"Existing daemon did not accept show: {e}")
            return 1
        return 0

    try:
        daemon.setup_signal_handlers()
        await daemon.initialize()
        logger.info(f"PID: {os.getpid()}")
        await daemon.run()
        await daemon.shutdown()
        return 0

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
