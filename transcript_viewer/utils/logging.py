"""Console and file logging for the CLI, the API server and editor sessions.

Console output goes through rich; every message is also appended to a
rotating ``app.log`` under the configured log directory. Records carry the
HTTP request id and the editor session id when either is set.
"""

from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.theme import Theme

_theme = Theme({
    "info": "cyan",
    "success": "green bold",
    "warning": "yellow bold",
    "error": "red bold",
    "debug": "dim white",
    "speaker": "magenta bold",
})
console = Console(theme=_theme)
err_console = Console(stderr=True, theme=_theme)

DEFAULT_LOG_DIR = Path("data/logs")
APP_LOGGER = "transcript_viewer.app"

# ── Correlation ───────────────────────────────────────────────────────────────

_request_id: ContextVar[str] = ContextVar("request_id", default="")
_session_id: ContextVar[str] = ContextVar("session_id", default="")


def set_request_id(rid: str = "") -> str:
    """Bind the request id for the current context, generating one when empty."""
    rid = rid or uuid.uuid4().hex[:12]
    _request_id.set(rid)
    return rid


def set_session_id(sid: str) -> None:
    _session_id.set(sid)


def _correlation() -> str:
    tags = [f"{k}={v}" for k, v in (("req", _request_id.get()), ("session", _session_id.get())) if v]
    return f"[{' '.join(tags)}] " if tags else ""


class _CorrelatedFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.msg = f"{_correlation()}{record.msg}"
        return super().format(record)


# ── Setup ─────────────────────────────────────────────────────────────────────

class Verbosity(str, Enum):
    SILENT = "silent"
    NORMAL = "normal"
    VERBOSE = "verbose"


_verbosity = Verbosity.NORMAL
_app_log: logging.Logger | None = None


def _level_for(verbosity: Verbosity) -> int:
    named = logging.getLevelName(os.environ.get("LOG_LEVEL", "").upper())
    if isinstance(named, int):
        return named
    return {Verbosity.SILENT: logging.ERROR, Verbosity.NORMAL: logging.INFO,
            Verbosity.VERBOSE: logging.DEBUG}[verbosity]


def setup_logging(verbosity: Verbosity = Verbosity.NORMAL, log_dir: str | Path | None = None) -> None:
    """Route stdlib logging through rich and (re)open the rotating app log.

    ``LOG_LEVEL`` in the environment overrides the level implied by
    ``verbosity``. Calling this again replaces the previous file handler.
    """
    global _verbosity, _app_log
    _verbosity = verbosity

    logging.basicConfig(
        level=_level_for(verbosity),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, markup=False)],
        force=True,
    )

    log_file = Path(log_dir or DEFAULT_LOG_DIR) / "app.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
    handler.setFormatter(_CorrelatedFormatter("%(asctime)s %(levelname)-8s %(message)s",
                                              datefmt="%Y-%m-%d %H:%M:%S"))

    _app_log = logging.getLogger(APP_LOGGER)
    _app_log.setLevel(logging.DEBUG)
    _app_log.propagate = False
    for old in list(_app_log.handlers):
        _app_log.removeHandler(old)
        old.close()
    _app_log.addHandler(handler)


# ── Helpers ───────────────────────────────────────────────────────────────────

# style, icon, file log level, minimum verbosity that prints to the console
_LEVELS: dict[str, tuple[str, str, int, Verbosity]] = {
    "info": ("info", "ℹ", logging.INFO, Verbosity.NORMAL),
    "success": ("success", "✓", logging.INFO, Verbosity.NORMAL),
    "warning": ("warning", "⚠", logging.WARNING, Verbosity.NORMAL),
    "error": ("error", "✗", logging.ERROR, Verbosity.SILENT),
    "debug": ("debug", " ", logging.DEBUG, Verbosity.VERBOSE),
}
_RANK = {Verbosity.SILENT: 0, Verbosity.NORMAL: 1, Verbosity.VERBOSE: 2}


def _emit(kind: str, msg: str, **kwargs: Any) -> None:
    style, icon, level, needed = _LEVELS[kind]
    if _RANK[_verbosity] >= _RANK[needed]:
        out = err_console if kind == "error" else console
        out.print(f"[{style}]{icon} {msg}[/{style}]", **kwargs)
    if _app_log:
        _app_log.log(level, msg)


def info(msg: str, **kwargs: Any) -> None:
    _emit("info", msg, **kwargs)


def success(msg: str, **kwargs: Any) -> None:
    _emit("success", msg, **kwargs)


def warn(msg: str, **kwargs: Any) -> None:
    _emit("warning", msg, **kwargs)


def error(msg: str, **kwargs: Any) -> None:
    _emit("error", msg, **kwargs)


def debug(msg: str, **kwargs: Any) -> None:
    _emit("debug", msg, **kwargs)


def notify(message: str, level: str = "info") -> None:
    """Log a user-facing notification; ``message`` is printed literally."""
    _emit(level if level in _LEVELS else "info", escape(message))
