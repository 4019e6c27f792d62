"""
Logging configuration for SoukBot.

Two branches hang off the ``soukbot`` logger:
- ``soukbot.<module>``: human-readable operational logs on stdout
- ``soukbot.events.<name>``: one JSON line per chat decision, see
  ``soukbot.utils.structured_logger``

LOG_LEVEL sets the level of both. SOUKBOT_EVENT_LOG, when set, also
appends the bare JSON event lines to that file, ready for replay.
"""
import logging
import os
import sys
from typing import Optional

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
EVENT_LOG_PATH = os.getenv("SOUKBOT_EVENT_LOG")

logger = logging.getLogger("soukbot")
logger.setLevel(LOG_LEVEL)

if not logger.handlers:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(LOG_LEVEL)
    console_handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logger.addHandler(console_handler)

# Prevent propagation to root logger (avoid duplicate logs)
logger.propagate = False

event_logger = logging.getLogger("soukbot.events")


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get an operational logger.

    Args:
        name: Module path appended to 'soukbot' (e.g. "core.chat_service")

    Returns:
        Logger instance
    """
    if name:
        return logging.getLogger(f"soukbot.{name}")
    return logger


def get_event_logger(name: str) -> logging.Logger:
    """Logger for one JSON event stream, under ``soukbot.events``."""
    return event_logger.getChild(name)


def configure_event_log(path: str) -> logging.Handler:
    """
    Append JSON event lines to ``path``, one per line and without the
    console prefix. Returns the handler so callers can remove it.
    """
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))
    event_logger.addHandler(handler)
    return handler


if EVENT_LOG_PATH and not event_logger.handlers:
    configure_event_log(EVENT_LOG_PATH)
