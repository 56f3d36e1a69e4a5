"""Logging setup shared by the CLIs and the build worker threads.

One root configuration: a console handler on stderr plus an optional file
handler (plain, size-rotated or time-rotated).  Records carry contextual
fields pushed with :func:`push_context`; the build orchestrator pushes
``build=<id>`` in each worker thread so interleaved builds stay readable.

Human lines::

    2026-10-19T13:45:12.345Z INFO     keyforge.build.orchestrator [build=1f2e3d4c] Build 1f2e3d4c succeeded

JSON lines (file handler with ``json=True``)::

    {"time": "2026-10-19T13:45:12.345Z", "level": "INFO", "logger": "...", "build": "1f2e3d4c", "message": "..."}

``setup_logging`` may be called again (e.g. with ``--verbose``); it
replaces the handlers it installed earlier instead of adding more.
"""

import contextvars
import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

_context_var: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "keyforge_log_context", default={}
)

_installed: List[logging.Handler] = []

_LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
_RESET = "\033[0m"


class ContextFormatter(logging.Formatter):
    """Render records with the current context fields, as text or JSON."""

    def __init__(self, json_lines: bool = False, use_color: bool = False):
        super().__init__()
        self.json_lines = json_lines
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        stamp_text = stamp.strftime("%Y-%m-%dT%H:%M:%S.") + f"{stamp.microsecond // 1000:03d}Z"
        context = _context_var.get()

        if self.json_lines:
            entry = {
                "time": stamp_text,
                "level": record.levelname,
                "logger": record.name,
                "thread": record.threadName,
            }
            entry.update(context)
            entry["message"] = record.getMessage()
            if record.exc_info:
                entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(entry, default=str)

        level = f"{record.levelname:8s}"
        if self.use_color:
            level = f"{_LEVEL_COLORS.get(record.levelname, '')}{level}{_RESET}"
        parts = [stamp_text, level, record.name]
        if context:
            parts.append("[" + " ".join(f"{k}={v}" for k, v in context.items()) + "]")
        parts.append(record.getMessage())
        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _file_handler(log_file: str, rotate: Optional[Dict[str, Any]]) -> logging.Handler:
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    if not rotate:
        return logging.FileHandler(path, encoding="utf-8")

    mode = rotate.get("mode", "size")
    if mode == "size":
        return logging.handlers.RotatingFileHandler(
            path,
            maxBytes=int(rotate.get("max_bytes", 5_000_000)),
            backupCount=int(rotate.get("backup_count", 3)),
            encoding="utf-8",
        )
    if mode == "time":
        return logging.handlers.TimedRotatingFileHandler(
            path,
            when=str(rotate.get("when", "D")),
            interval=int(rotate.get("interval", 1)),
            backupCount=int(rotate.get("backup_count", 7)),
            encoding="utf-8",
        )
    raise ValueError(f"Unknown log rotation mode {mode!r}; use 'size' or 'time'")


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    *,
    json: bool = False,
    color: bool = True,
    rotate: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
) -> List[logging.Handler]:
    """Configure the root logger.

    Parameters
    ----------
    log_level : str
        "DEBUG", "INFO", "WARNING", "ERROR" or "CRITICAL".
    log_file : str, optional
        Also log to this file.
    json : bool
        JSON lines in the file handler (the console stays human-readable).
    color : bool
        ANSI level colours on the console when stderr is a terminal.
    rotate : dict, optional
        ``{"mode": "size", "max_bytes": ..., "backup_count": ...}`` or
        ``{"mode": "time", "when": "D", "interval": 1, "backup_count": ...}``.
    context : dict, optional
        Fields pushed before returning (e.g. ``{"keyboard": "crkbd"}``).

    Returns
    -------
    list[logging.Handler]
        Handlers now installed on the root logger.
    """
    root = logging.getLogger()
    for handler in _installed:
        root.removeHandler(handler)
        handler.close()
    _installed.clear()

    root.setLevel(getattr(logging, log_level.upper()))

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(ContextFormatter(use_color=color and sys.stderr.isatty()))
    _installed.append(console)

    if log_file:
        file_handler = _file_handler(log_file, rotate)
        file_handler.setFormatter(ContextFormatter(json_lines=json))
        _installed.append(file_handler)

    for handler in _installed:
        root.addHandler(handler)
    logging.captureWarnings(True)

    if context:
        push_context(**context)
    return list(_installed)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def push_context(**fields: Any) -> None:
    """Attach ``fields`` to every record logged from this thread / context."""
    _context_var.set({**_context_var.get(), **fields})


def pop_context(keys: Optional[List[str]] = None) -> None:
    """Drop the named context fields, or all of them when ``keys`` is None."""
    if keys is None:
        _context_var.set({})
        return
    remaining = {k: v for k, v in _context_var.get().items() if k not in keys}
    _context_var.set(remaining)


def get_context() -> Dict[str, Any]:
    return dict(_context_var.get())


def install_excepthook() -> None:
    """Route uncaught exceptions (other than Ctrl+C) through logging."""

    def _log_uncaught(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logging.getLogger("keyforge").critical(
            "Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback)
        )

    sys.excepthook = _log_uncaught
