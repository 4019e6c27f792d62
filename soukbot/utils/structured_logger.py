"""
Structured JSON logger for chat decisions.

Each entry is a single JSON line so context-validation verdicts, cache
hits and partner search outcomes can be grepped and replayed later.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from soukbot.utils.logger import get_event_logger


class LogLevel(str, Enum):
    """Log levels matching Python logging."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class StructuredLogger:
    """
    JSON structured logger for chat events.

    Each log entry includes:
    - timestamp (ISO 8601)
    - level
    - event_type (context_validation, cache_hit, out_of_context, ...)
    - message (human-readable)
    - context (structured data: query, confidence, counts)

    Entries go to ``soukbot.events.<name>``: they reach the console with
    the operational logs and, when configured, the JSON event file.
    """

    def __init__(self, name: str = "events"):
        self.name = name
        self.logger = get_event_logger(name)

    def _log(
        self,
        level: LogLevel,
        event_type: str,
        message: str,
        context: Optional[Dict[str, Any]] = None
    ):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.value,
            "logger": self.name,
            "event_type": event_type,
            "message": message,
        }

        if context:
            log_entry["context"] = context

        # default=str keeps enums and datetimes from breaking the line
        self.logger.log(getattr(logging, level.value), json.dumps(log_entry, ensure_ascii=False, default=str))

    def debug(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        """Log a DEBUG event."""
        self._log(LogLevel.DEBUG, event_type, message, context)

    def info(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        """Log an INFO event."""
        self._log(LogLevel.INFO, event_type, message, context)

    def warning(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        """Log a WARNING event."""
        self._log(LogLevel.WARNING, event_type, message, context)

    def error(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        """Log an ERROR event."""
        self._log(LogLevel.ERROR, event_type, message, context)
