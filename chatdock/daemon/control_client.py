"""JSON-RPC client for a daemon's control socket."""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional


async def send_request(socket_path: Path, method: str, params: Optional[Dict[str, Any]] = None,
                       timeout: float = 5.0) -> Dict[str, Any]:
    """
    Send JSON-RPC request to daemon.

    Args:
        socket_path: Control socket of the target daemon
        method: RPC method name
        params: Method parameters
        timeout: Seconds to wait for connect + response

    Returns:
        The ``result`` member of the response

    Raises:
        ConnectionError: If cannot connect to daemon
        RuntimeError: If request fails
    """
    if not socket_path.exists():
        raise ConnectionError(f"Daemon not running (socket not found: {socket_path})")

    request = {
        "jsonrpc": "2.0",
        "method": method,
        "params": params or {},
        "id": 1
    }

    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_unix_connection(str(socket_path)), timeout=timeout
        )
    except (OSError, asyncio.TimeoutError) as e:
        raise ConnectionError(f"Daemon not reachable at {socket_path}: {e}") from e

    try:
        writer.write((json.dumps(request) + "\n").encode())
        await writer.drain()

        data = await asyncio.wait_for(reader.readline(), timeout=timeout)
        if not data:
            raise RuntimeError("Daemon closed the connection without replying")
        response = json.loads(data.decode())
    except (OSError, asyncio.TimeoutError, json.JSONDecodeError) as e:
        raise RuntimeError(f"Failed to communicate with daemon: {e}") from e
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    if "error" in response:
        raise RuntimeError(f"RPC error: {response['error']['message']}")

    return response.get("result", {})


async def daemon_running(socket_path: Path, timeout: float = 1.0) -> bool:
    """True when a daemon answers ``ping`` on ``socket_path``."""
    try:
        result = await send_request(socket_path, "ping", timeout=timeout)
    except (ConnectionError, RuntimeError):
        return False
    return result.get("status") == "ok"
