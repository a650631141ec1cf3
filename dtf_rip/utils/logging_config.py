"""Logging setup shared by the CLI and by services embedding the RIP.

Features:
    - Console handler (optionally colored) and file handler with size or
      time based rotation
    - One JSON object per line in the file, for log shippers
    - Context fields (``app``, ``job``) held in a contextvar and appended
      to every record
    - Python warnings routed into logging

Public API:
    setup_logging(**cfg.logging.as_kwargs(), context={"app": "dtf-rip"})
    get_logger(name)
    push_context(app="dtf-rip")
    pop_context(keys=["app"])
    with job_context(job_id): ...

Format examples:
    Human: 2026-10-19T13:45:12.345Z | INFO     | app=dtf-rip job=3f2a9c00 | Queued job ...
    JSON:  {"t": "2026-10-19T13:45:12.345000+00:00", "lvl": "INFO", "job": "3f2a9c00", "msg": "..."}

Worker threads start with an empty context, so a pipeline thread carries
only the ``job`` field its ``job_context`` sets.  Calling setup_logging()
again replaces the handlers it installed before instead of stacking them.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

_context_var: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    'dtf_rip_log_context', default={}
)

_installed: List[logging.Handler] = []

_LEVEL_COLORS = {
    'DEBUG': '\033[36m',
    'INFO': '\033[32m',
    'WARNING': '\033[33m',
    'ERROR': '\033[31m',
    'CRITICAL': '\033[35m',
}
_RESET = '\033[0m'


class ContextFormatter(logging.Formatter):
    """Render records as a human line or a JSON object, plus context fields.

    Parameters
    ----------
    fmt_mode : str
        ``"human"`` or ``"json"``
    use_color : bool
        Color the level name (only when stderr is a terminal)
    tz : str
        ``"UTC"`` or ``"local"`` timestamps
    """

    def __init__(self, fmt_mode: str = "human", use_color: bool = True, tz: str = "UTC"):
        super().__init__()
        if fmt_mode not in ("human", "json"):
            raise ValueError(f"Unknown log format: {fmt_mode}")
        self.fmt_mode = fmt_mode
        self.use_color = use_color and sys.stderr.isatty()
        self.tz = tz

    def _timestamp(self, record: logging.LogRecord) -> datetime:
        if self.tz == "UTC":
            return datetime.fromtimestamp(record.created, tz=timezone.utc)
        return datetime.fromtimestamp(record.created).astimezone()

    def format(self, record: logging.LogRecord) -> str:
        ts = self._timestamp(record)
        context = _context_var.get()
        exc_text = self.formatException(record.exc_info) if record.exc_info else None

        if self.fmt_mode == "json":
            payload: Dict[str, Any] = {
                't': ts.isoformat(),
                'lvl': record.levelname,
                'name': record.name,
                'pid': os.getpid(),
                'thread': record.threadName,
                **context,
                'msg': record.getMessage(),
            }
            if exc_text:
                payload['exc'] = exc_text
            return json.dumps(payload, default=str)

        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{_LEVEL_COLORS.get(record.levelname, '')}{level}{_RESET}"
        fields = [ts.strftime('%Y-%m-%dT%H:%M:%S.') + f"{ts.microsecond // 1000:03d}Z", level]
        if context:
            fields.append(' '.join(f"{k}={v}" for k, v in context.items()))
        fields.append(record.getMessage())
        line = ' | '.join(fields)
        return f"{line}\n{exc_text}" if exc_text else line


def _file_handler(path: str, rotate: Optional[Dict[str, Any]]) -> logging.Handler:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    if not rotate:
        return logging.FileHandler(path)

    mode = rotate.get('mode', 'size')
    if mode == 'size':
        return logging.handlers.RotatingFileHandler(
            path,
            maxBytes=int(rotate.get('max_bytes', 5_000_000)),
            backupCount=int(rotate.get('backup_count', 5)),
        )
    if mode == 'time':
        return logging.handlers.TimedRotatingFileHandler(
            path,
            when=rotate.get('when', 'D'),
            interval=int(rotate.get('interval', 1)),
            backupCount=int(rotate.get('backup_count', 7)),
        )
    raise ValueError(f"Unknown rotation mode: {mode!r} (expected 'size' or 'time')")


def setup_logging(
    level: str = "INFO",
    file: Optional[str] = None,
    *,
    json: bool = False,
    color: bool = True,
    to_stderr: bool = True,
    rotate: Optional[Dict[str, Any]] = None,
    tz: str = "UTC",
    capture_warnings: bool = True,
    quiet_libs: Optional[List[str]] = None,
    context: Optional[Dict[str, Any]] = None,
) -> List[logging.Handler]:
    """Configure the root logger.

    Parameters
    ----------
    level : str
        Root level name ("DEBUG" .. "CRITICAL")
    file : str, optional
        Log file; None disables file logging
    json : bool
        Write the file as JSON lines instead of human lines
    color : bool
        Colored level names on the console
    to_stderr : bool
        Install the console handler
    rotate : dict, optional
        ``{"mode": "size", "max_bytes": ..., "backup_count": ...}`` or
        ``{"mode": "time", "when": "D", "interval": 1, "backup_count": ...}``
    tz : str
        "UTC" (default) or "local"
    capture_warnings : bool
        Route ``warnings.warn`` through logging
    quiet_libs : list[str], optional
        Loggers forced to WARNING (default: PIL, whose decoder chatter is
        DEBUG noise)
    context : dict, optional
        Fields pushed into the logging context, e.g. ``{"app": "dtf-rip"}``

    Returns
    -------
    list[logging.Handler]
        The handlers now installed on the root logger
    """
    root = logging.getLogger()
    while _installed:
        handler = _installed.pop()
        root.removeHandler(handler)
        handler.close()

    root.setLevel(level.upper())

    if to_stderr:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(ContextFormatter("human", use_color=color, tz=tz))
        _installed.append(console)
    if file:
        file_handler = _file_handler(file, rotate)
        file_handler.setFormatter(
            ContextFormatter("json" if json else "human", use_color=False, tz=tz)
        )
        _installed.append(file_handler)

    for handler in _installed:
        root.addHandler(handler)

    for name in (["PIL"] if quiet_libs is None else quiet_libs):
        logging.getLogger(name).setLevel(logging.WARNING)
    if capture_warnings:
        logging.captureWarnings(True)
    if context:
        push_context(**context)

    return list(_installed)


def get_logger(name: str) -> logging.Logger:
    """Module logger; equivalent to ``logging.getLogger(name)``."""
    return logging.getLogger(name)


def push_context(**fields: Any) -> None:
    """Add fields to every later record logged from this context."""
    _context_var.set({**_context_var.get(), **fields})


def pop_context(keys: Optional[List[str]] = None) -> None:
    """Drop the named context fields, or all of them when *keys* is None."""
    if keys is None:
        _context_var.set({})
        return
    _context_var.set({k: v for k, v in _context_var.get().items() if k not in keys})


@contextlib.contextmanager
def job_context(job_id: str) -> Iterator[None]:
    """Tag records emitted inside the block with ``job=<first 8 chars>``."""
    token = _context_var.set({**_context_var.get(), 'job': job_id[:8]})
    try:
        yield
    finally:
        _context_var.reset(token)
