"""Logging setup for chatdock processes.

Every process logs to the systemd journal when systemd-python is available
(stderr otherwise) and additionally keeps a DEBUG-level file log under
``$XDG_DATA_HOME/chatdock/logs/<name>.log``. The native-messaging relay
must never write to stdout, so it logs to the file only.
"""

import contextlib
import logging
import os
import sys
from pathlib import Path
from typing import Optional

try:
    from systemd import journal
    SYSTEMD_AVAILABLE = True
except ImportError:
    SYSTEMD_AVAILABLE = False

from .config import data_dir

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s [%(name)s] %(message)s"
FILE_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@contextlib.contextmanager
def _suppress_stderr_fd():
    """Silence writes to file descriptor 2 (systemd-python writes there directly)."""
    try:
        stderr_fd = sys.stderr.fileno()
    except (AttributeError, ValueError, OSError):
        yield
        return

    saved_stderr_fd = os.dup(stderr_fd)
    devnull_fd = os.open(os.devnull, os.O_WRONLY)
    os.dup2(devnull_fd, stderr_fd)
    os.close(devnull_fd)

    try:
        yield
    finally:
        os.dup2(saved_stderr_fd, stderr_fd)
        os.close(saved_stderr_fd)


def log_file_path(name: str) -> Path:
    """Path of the per-process debug log."""
    return data_dir() / "logs" / f"{name}.log"


def setup_logging(name: str, verbose: bool = False, file_only: bool = False,
                  log_dir: Optional[Path] = None) -> Path:
    """Configure the root logger.

    Args:
        name: Process name, used for the journal identifier and the log file
        verbose: Force DEBUG on the console handler
        file_only: Skip the journal/stderr handler (relay mode)
        log_dir: Override the log directory (tests)

    Returns:
        Path of the file log
    """
    log_level = "DEBUG" if verbose else os.environ.get("LOG_LEVEL", "INFO").upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    if not file_only:
        if SYSTEMD_AVAILABLE and os.environ.get("INVOCATION_ID"):
            with _suppress_stderr_fd():
                handler = journal.JournalHandler(SYSLOG_IDENTIFIER=f"chatdock-{name}")
        else:
            handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(log_level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)

    path = (log_dir / f"{name}.log") if log_dir else log_file_path(name)
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
    root_logger.addHandler(file_handler)

    logger.info(f"Logging configured: level={log_level}, file={path}")
    return path
