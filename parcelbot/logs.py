"""Logging setup for ParcelBot processes.

Library modules only create loggers under the ``ParcelBot`` hierarchy; the
process that hosts the agents calls :func:`configure_logging` once.
"""

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_log_file_path() -> str:
    """Get the log file path from env or default."""
    return os.getenv("PARCELBOT_LOG_FILE", "")


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Install stream (and optional file) handlers on the root logger.

    Args:
        level: Level name, e.g. ``"DEBUG"``.
        log_file: Optional path for a copy of the log. Falls back to
            ``$PARCELBOT_LOG_FILE`` when not given.

    Returns:
        The ``ParcelBot`` logger.
    """
    handlers: list = [logging.StreamHandler()]
    path = log_file or get_log_file_path()
    if path:
        handlers.append(logging.FileHandler(path))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    return logging.getLogger("ParcelBot")
