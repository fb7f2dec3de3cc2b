"""Configuration and filesystem layout for chatdock.

Layout (XDG):
- $XDG_CONFIG_HOME/chatdock/config.json            GlobalConfig
- $XDG_CONFIG_HOME/chatdock/services/<name>.json   ServiceConfig
- $XDG_DATA_HOME/chatdock/                         agent state, logs
- $XDG_RUNTIME_DIR/chatdock/<name>.sock            agent message channel
- $XDG_RUNTIME_DIR/chatdock/<name>-control.sock    daemon JSON-RPC control
- $XDG_RUNTIME_DIR/chatdock/<name>-status.json     published daemon status

Missing files mean defaults. Corrupt files raise ConfigLoadError so the
caller decides whether to continue with defaults.
"""

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigLoadError

logger = logging.getLogger(__name__)

APP_NAME = "chatdock"


def config_dir() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_NAME


def data_dir() -> Path:
    base = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / APP_NAME


def runtime_dir() -> Path:
    """Per-session runtime directory (sockets, status files)."""
    base = os.environ.get("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")
    return Path(base) / APP_NAME


def agent_socket_path(service: str) -> Path:
    return runtime_dir() / f"{service}.sock"


def control_socket_path(service: str) -> Path:
    return runtime_dir() / f"{service}-control.sock"


def status_file_path(service: str) -> Path:
    return runtime_dir() / f"{service}-status.json"


def atomic_write_json(path: Path, data: Dict[str, Any]) -> None:
    """Write JSON to ``path`` via temp file + rename in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


class GlobalConfig(BaseModel):
    """Settings shared by all services."""

    devtools_url: str = Field(
        "http://127.0.0.1:9222",
        description="HTTP endpoint of the browser's remote debugging port",
    )
    shell_helper_enabled: bool = Field(
        True, description="Call the session-bus shell helper on show/hide"
    )

    @field_validator("devtools_url")
    @classmethod
    def validate_devtools_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"devtools_url must be an http(s) URL, got {v!r}")
        return v.rstrip("/")


class ServiceConfig(BaseModel):
    """Per-service settings, persisted in services/<name>.json."""

    do_not_disturb: bool = Field(False, description="Suppress desktop notifications")
    start_minimized: bool = Field(False, description="Hide the window on first show")


def _load_model(path: Path, model):
    if not path.exists():
        logger.debug(f"No config at {path}, using defaults")
        return model()

    try:
        with path.open("r") as f:
            data = json.load(f)
        return model.model_validate(data)
    except (json.JSONDecodeError, ValidationError, OSError) as e:
        raise ConfigLoadError(str(path), str(e)) from e


def global_config_path() -> Path:
    return config_dir() / "config.json"


def service_config_path(service: str) -> Path:
    return config_dir() / "services" / f"{service}.json"


def load_global_config(path: Optional[Path] = None) -> GlobalConfig:
    return _load_model(path or global_config_path(), GlobalConfig)


def load_service_config(service: str, path: Optional[Path] = None) -> ServiceConfig:
    return _load_model(path or service_config_path(service), ServiceConfig)


def save_service_config(service: str, config: ServiceConfig, path: Optional[Path] = None) -> None:
    target = path or service_config_path(service)
    atomic_write_json(target, config.model_dump())
    logger.debug(f"Saved service config for {service} to {target}")
