"""Logging setup for tiiscan.

All loggers live under the ``tiiscan`` namespace. The console handler writes
one line per record to stderr; an optional JSON-lines file receives the same
records for later analysis. Scan context passed through ``extra=`` (channel,
cycle, ensemble, ...) is appended to console lines and kept as fields in JSON.

    from tiiscan.util.logging import get_logger
    log = get_logger(__name__)
    log.info("no sync", extra={"channel": "5C", "cycle": 2})
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

NAMESPACE = "tiiscan"

CONTEXT_FIELDS: Tuple[str, ...] = ("channel", "cycle", "ensemble", "run_id", "error_type", "duration_ms")

_ANSI = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_ANSI_RESET = "\033[0m"

_configured = False


def _context(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if getattr(record, key, None) is not None}


def _traceback(record: logging.LogRecord) -> Optional[str]:
    if not record.exc_info:
        return None
    return "".join(traceback.format_exception(*record.exc_info)).rstrip()


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(_context(record))
        tb = _traceback(record)
        if tb:
            payload["traceback"] = tb
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL component: message [channel=5C cycle=2]``."""

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color and sys.stderr.isatty()

    def _level(self, record: logging.LogRecord) -> str:
        text = f"{record.levelname:<7}"
        if not self.use_color:
            return text
        return f"{_ANSI.get(record.levelno, '')}{text}{_ANSI_RESET}"

    def format(self, record: logging.LogRecord) -> str:
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        component = record.name[len(NAMESPACE) + 1:] if record.name.startswith(NAMESPACE + ".") else record.name
        line = f"{clock} {self._level(record)} {component}: {record.getMessage()}"
        ctx = _context(record)
        if ctx:
            line += " [" + " ".join(f"{k}={v}" for k, v in ctx.items()) + "]"
        tb = _traceback(record)
        if tb:
            line += "\n" + tb
        return line


def _resolve_level(level: Optional[str]) -> int:
    if level is None:
        debug = os.environ.get("TIISCAN_DEBUG", "").strip().lower() in ("1", "true", "yes")
        level = "DEBUG" if debug else os.environ.get("TIISCAN_LOG_LEVEL", "INFO")
    value = logging.getLevelName(str(level).strip().upper())
    return value if isinstance(value, int) else logging.INFO


def configure_logging(
    *,
    level: Optional[str] = None,
    json_file: Optional[str] = None,
    use_color: bool = True,
) -> None:
    """Install the console handler and, with ``json_file``, a JSON-lines file handler.

    ``level`` defaults to TIISCAN_LOG_LEVEL (INFO), or DEBUG when TIISCAN_DEBUG
    is set. Calling it again replaces the handlers of a previous call.
    """
    global _configured

    numeric = _resolve_level(level)
    root = logging.getLogger(NAMESPACE)
    root.setLevel(numeric)
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()

    handlers: List[logging.Handler] = []
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(ConsoleFormatter(use_color=use_color))
    handlers.append(console)
    json_error: Optional[OSError] = None
    if json_file:
        try:
            sink = logging.FileHandler(json_file, mode="a", encoding="utf-8")
        except OSError as exc:
            json_error = exc
        else:
            sink.setFormatter(JSONFormatter())
            handlers.append(sink)

    for handler in handlers:
        handler.setLevel(numeric)
        root.addHandler(handler)
    # records reach the root logger only while no JSON sink is attached
    root.propagate = len(handlers) == 1
    _configured = True

    if json_error is not None:
        root.warning("cannot open JSON log %s: %s", json_file, json_error)


def get_logger(name: str) -> logging.Logger:
    """Logger under the tiiscan namespace; configures defaults on first use."""
    if not _configured:
        configure_logging()
    if name == "__main__":
        name = "main"
    if name != NAMESPACE and not name.startswith(NAMESPACE + "."):
        name = f"{NAMESPACE}.{name}"
    return logging.getLogger(name)


def log_exception(logger: logging.Logger, message: str, *, error_type: Optional[str] = None, **extra: Any) -> None:
    """Log the exception being handled, tagged with ``error_type`` (e.g. "tuner_fault")."""
    if error_type:
        extra["error_type"] = error_type
    logger.exception(message, extra=extra)
