#!/usr/bin/env python3
"""
chatdock CLI

Starts the daemon, agent, shell helper and relay processes, and controls a
running service daemon over its JSON-RPC socket.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional

from . import __version__
from .config import (
    GlobalConfig,
    ServiceConfig,
    control_socket_path,
    load_global_config,
    load_service_config,
)
from .errors import ChatdockError, ConfigLoadError
from .logging_setup import setup_logging
from .services import SERVICES, get_service

logger = logging.getLogger(__name__)


def _load_global() -> GlobalConfig:
    try:
        return load_global_config()
    except ConfigLoadError as e:
        logger.warning(f"{e.message}; using defaults")
        return GlobalConfig()


def _load_service(name: str) -> ServiceConfig:
    try:
        return load_service_config(name)
    except ConfigLoadError as e:
        logger.warning(f"{e.message}; using defaults")
        return ServiceConfig()


class ChatdockCLI:
    """CLI for chatdock processes and daemon control."""

    async def send_request(self, service: str, method: str,
                           params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        from .daemon.control_client import send_request

        return await send_request(control_socket_path(service), method, params)

    # Processes -----------------------------------------------------------------

    def cmd_daemon(self, args) -> int:
        """Run the daemon for one service."""
        from .daemon import ServiceDaemon, main_async

        service = get_service(args.service)
        setup_logging(f"daemon-{service.name}", verbose=args.verbose)
        logger.info(f"chatdock {__version__} daemon starting for {service.display_name}")

        daemon = ServiceDaemon(
            service,
            _load_global(),
            _load_service(service.name),
            start_minimized=args.minimized,
        )
        return asyncio.run(main_async(daemon))

    def cmd_agent(self, args) -> int:
        """Run the browser agent."""
        from .agent.runtime import run_agent

        names = args.service or list(SERVICES)
        services = [get_service(name) for name in names]
        setup_logging("agent", verbose=args.verbose)
        logger.info(f"chatdock {__version__} agent starting for: {', '.join(names)}")
        return asyncio.run(run_agent(services, _load_global()))

    def cmd_shell_helper(self, args) -> int:
        """Run the session-bus shell helper."""
        from .shell.helper import run_shell_helper

        setup_logging("shell-helper", verbose=args.verbose)
        return run_shell_helper()

    def cmd_relay(self, args) -> int:
        """Run as a native-messaging host (stdout carries frames only)."""
        from .daemon.relay import run_relay

        setup_logging("relay", verbose=args.verbose, file_only=True)
        return asyncio.run(run_relay())

    # Control -------------------------------------------------------------------

    async def cmd_show(self, args) -> int:
        await self.send_request(args.service, "show")
        return 0

    async def cmd_hide(self, args) -> int:
        await self.send_request(args.service, "hide")
        return 0

    async def cmd_toggle(self, args) -> int:
        result = await self.send_request(args.service, "toggle")
        print("visible" if result.get("visible") else "hidden")
        return 0

    async def cmd_dnd(self, args) -> int:
        """Set or toggle Do Not Disturb."""
        if args.state == "toggle":
            status = await self.send_request(args.service, "get_status")
            enabled = not status.get("dnd", False)
        else:
            enabled = args.state == "on"

        result = await self.send_request(args.service, "set_dnd", {"enabled": enabled})
        print(f"Do Not Disturb: {'on' if result.get('dnd') else 'off'}")
        return 0

    async def cmd_status(self, args) -> int:
        """Show daemon status."""
        try:
            result = await self.send_request(args.service, "get_status")
        except ConnectionError as e:
            if args.json:
                print(json.dumps({"service": args.service, "running": False}))
            else:
                print(f"❌ Daemon not running: {e}")
            return 1

        if args.json:
            print(json.dumps(result, indent=2))
            return 0

        badge = result.get("badge_count", 0)
        print(f"Service:  {result.get('service')}")
        print(f"Window:   {'visible' if result.get('visible') else 'hidden'}")
        print(f"Unread:   {badge}")
        print(f"DND:      {'on' if result.get('dnd') else 'off'}")
        return 0

    async def cmd_quit(self, args) -> int:
        await self.send_request(args.service, "quit")
        return 0

    def build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Desktop presence for messaging web apps",
            prog="chatdock"
        )
        parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

        subparsers = parser.add_subparsers(dest="command", help="Command to execute")
        service_names = sorted(SERVICES)

        daemon_parser = subparsers.add_parser("daemon", help="Run the daemon for a service")
        daemon_parser.add_argument("--service", required=True, choices=service_names)
        daemon_parser.add_argument("--minimized", action="store_true", help="Hide the window on first show")
        daemon_parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

        agent_parser = subparsers.add_parser("agent", help="Run the browser agent")
        agent_parser.add_argument("--service", action="append", choices=service_names,
                                  help="Service to manage (repeatable, default: all)")
        agent_parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

        helper_parser = subparsers.add_parser("shell-helper", help="Run the sway/i3 shell helper")
        helper_parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

        relay_parser = subparsers.add_parser("relay", help="Native-messaging relay (started by the browser)")
        relay_parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
        # Browsers pass the caller origin (and a window id on some platforms).
        relay_parser.add_argument("origin", nargs="*", help=argparse.SUPPRESS)

        for name, help_text in (("show", "Show the service window"),
                                ("hide", "Hide the service window"),
                                ("toggle", "Toggle the service window"),
                                ("quit", "Stop the service daemon")):
            sub = subparsers.add_parser(name, help=help_text)
            sub.add_argument("service", choices=service_names)

        dnd_parser = subparsers.add_parser("dnd", help="Set Do Not Disturb")
        dnd_parser.add_argument("service", choices=service_names)
        dnd_parser.add_argument("state", choices=["on", "off", "toggle"])

        status_parser = subparsers.add_parser("status", help="Show daemon status")
        status_parser.add_argument("service", choices=service_names)
        status_parser.add_argument("--json", action="store_true", help="Output as JSON")

        return parser

    def run(self, argv=None) -> int:
        """Run CLI."""
        parser = self.build_parser()
        args = parser.parse_args(argv)

        if not args.command:
            parser.print_help()
            return 1

        process_map = {
            "daemon": self.cmd_daemon,
            "agent": self.cmd_agent,
            "shell-helper": self.cmd_shell_helper,
            "relay": self.cmd_relay,
        }
        cmd_map = {
            "show": self.cmd_show,
            "hide": self.cmd_hide,
            "toggle": self.cmd_toggle,
            "dnd": self.cmd_dnd,
            "status": self.cmd_status,
            "quit": self.cmd_quit,
        }

        try:
            if args.command in process_map:
                return process_map[args.command](args)
            return asyncio.run(cmd_map[args.command](args))
        except KeyboardInterrupt:
            print("\nInterrupted", file=sys.stderr)
            return 130
        except ChatdockError as e:
            print(f"❌ {e.message}", file=sys.stderr)
            if e.suggestion:
                print(f"  → {e.suggestion}", file=sys.stderr)
            return 1
        except (ConnectionError, RuntimeError) as e:
            print(f"❌ Error: {e}", file=sys.stderr)
            return 1


def main():
    """Main entry point."""
    cli = ChatdockCLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
