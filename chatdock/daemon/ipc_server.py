"""
Control socket for a service daemon.

Newline-delimited JSON-RPC 2.0 on ``$XDG_RUNTIME_DIR/chatdock/<service>-control.sock``.
Used by the CLI, bar/tray frontends and the singleton check.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import (
    ChatdockError,
    ErrorCode,
    error_response,
    validate_params,
)
from .state import DaemonState

logger = logging.getLogger(__name__)

METHODS = ["show", "hide", "toggle", "quit", "get_status", "set_dnd", "ping"]


class IPCServer:
    """JSON-RPC IPC server for daemon control."""

    def __init__(self, state: DaemonState, socket_path: Path):
        self.state = state
        self.socket_path = socket_path
        self.server: Optional[asyncio.AbstractServer] = None
        self.clients = set()

    async def start(self):
        """Start IPC server."""
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)

        if self.socket_path.exists():
            self.socket_path.unlink()

        self.server = await asyncio.start_unix_server(
            self._handle_client,
            path=str(self.socket_path)
        )

        logger.info(f"IPC server listening on {self.socket_path}")

    async def stop(self):
        """Stop IPC server."""
        if self.server:
            self.server.close()
            await self.server.wait_closed()

        if self.socket_path.exists():
            self.socket_path.unlink()

        logger.info("IPC server stopped")

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.clients.add(writer)
        logger.debug("Control client connected")

        try:
            while True:
                data = await reader.readline()
                if not data:
                    break

                try:
                    request = json.loads(data.decode())
                except (UnicodeDecodeError, json.JSONDecodeError) as e:
                    response = error_response(
                        ChatdockError(ErrorCode.PARSE_ERROR, f"Invalid JSON: {e}"), None
                    )
                else:
                    response = await self._handle_request(request)

                writer.write((json.dumps(response) + "\n").encode())
                await writer.drain()

        except (ConnectionError, OSError) as e:
            logger.debug(f"Control client error: {e}")
        finally:
            self.clients.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            logger.debug("Control client disconnected")

    async def _handle_request(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Handle JSON-RPC request.

        Args:
            request: JSON-RPC request dict

        Returns:
            JSON-RPC response dict
        """
        if not isinstance(request, dict):
            return error_response(
                ChatdockError(ErrorCode.INVALID_REQUEST, "Request must be a JSON object"), None
            )

        method = request.get("method")
        params = request.get("params") or {}
        request_id = request.get("id")

        logger.debug(f"Received request: {method}")

        try:
            if not method:
                raise ChatdockError(
                    code=ErrorCode.INVALID_REQUEST,
                    message="Missing 'method' field in request",
                    suggestion="Provide 'method' field in JSON-RPC request"
                )

            if method == "show":
                validate_params(params, required=[], optional=[])
                await self.state.request_show()
                result = self.state.status()
            elif method == "hide":
                validate_params(params, required=[], optional=[])
                await self.state.request_hide()
                result = self.state.status()
            elif method == "toggle":
                validate_params(params, required=[], optional=[])
                await self.state.toggle()
                result = self.state.status()
            elif method == "set_dnd":
                validate_params(params, required=["enabled"], optional=[])
                if not isinstance(params["enabled"], bool):
                    raise ChatdockError(
                        code=ErrorCode.INVALID_PARAMS,
                        message="'enabled' must be a boolean",
                        context={"enabled": params["enabled"]}
                    )
                await self.state.set_dnd(params["enabled"])
                result = self.state.status()
            elif method == "get_status":
                result = self.state.status()
            elif method == "quit":
                self.state.request_quit()
                result = {"status": "quitting"}
            elif method == "ping":
                result = {"status": "ok", "daemon": "chatdock", "service": self.state.service.name}
            else:
                raise ChatdockError(
                    code=ErrorCode.METHOD_NOT_FOUND,
                    message=f"Method not found: {method}",
                    suggestion="Check available methods",
                    context={"available_methods": METHODS}
                )

            return {
                "jsonrpc": "2.0",
                "result": result,
                "id": request_id
            }

        except ChatdockError as e:
            logger.error(f"Error in {method}: {e.message}")
            return error_response(e, request_id)

        except Exception as e:
            logger.error(f"Unexpected error handling {method}: {e}", exc_info=True)
            return error_response(e, request_id)
