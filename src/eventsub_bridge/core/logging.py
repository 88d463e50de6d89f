"""
Logging setup for the bridge.

Interactive terminals get rich's RichHandler (sharing the CLI console so
log lines and the countdown spinner do not fight); anything else gets
plain text, or one JSON object per line with EVENTSUB_LOG_FORMAT=json.

    EVENTSUB_LOG_LEVEL   DEBUG / INFO / WARNING / ERROR (default INFO)
    EVENTSUB_LOG_COLOR   true / false / auto (default auto, TTY detection)
    EVENTSUB_LOG_FORMAT  text / json (default text)

Extras forwarded to JSON output when passed via logger.info(..., extra={...}):
    session_id, event_type, attempt, status, subscription_type
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone

from rich.console import Console
from rich.logging import RichHandler

EXTRA_FIELDS = ("session_id", "event_type", "attempt", "status", "subscription_type")

# Request and frame level chatter
QUIET_LOGGERS = ("httpx", "httpcore", "websockets")

PLAIN_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, extras at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update({key: getattr(record, key) for key in EXTRA_FIELDS if hasattr(record, key)})
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def wants_color() -> bool:
    setting = os.getenv("EVENTSUB_LOG_COLOR", "auto").lower()
    if setting in ("true", "false"):
        return setting == "true"
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def build_handler(log_format: str, color: bool, console: Console | None = None) -> logging.Handler:
    if log_format == "json":
        handler: logging.Handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
    elif color:
        handler = RichHandler(
            console=console,
            show_path=False,
            log_time_format="%H:%M:%S",
            markup=False,
            rich_tracebacks=True,
        )
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%H:%M:%S"))
    return handler


def setup_logging(console: Console | None = None) -> None:
    """Configure the root logger. Call once at startup."""
    level_name = os.getenv("EVENTSUB_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    log_format = os.getenv("EVENTSUB_LOG_FORMAT", "text").lower()

    root = logging.getLogger()
    root.setLevel(level)
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = build_handler(log_format, wants_color(), console)
    handler.setLevel(level)
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("eventsub_bridge").debug(
        "Logging configured (level=%s, format=%s)", level_name, log_format
    )
