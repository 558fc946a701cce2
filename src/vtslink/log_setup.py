"""Logging initialiser for vtslink processes.

Call ``init()`` (or ``init_from_config()``) once at process start. Records go
to a rotating file under the log directory; in foreground mode they are also
rendered on the terminal through rich.

File format (UTC timestamps)::

    2026-03-02T10:00:00.123Z [INFO    ] vtslink.connection: Status -> ready
"""

from __future__ import annotations

import logging
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.logging import RichHandler

from .config import Config, resolve_log_dir

_MAX_BYTES = 2 * 1024 * 1024
_BACKUP_COUNT = 3
_FMT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"

# Third-party loggers that are noisy at DEBUG.
_QUIET = ("websockets", "uvicorn.access")


class _UtcFormatter(logging.Formatter):
    converter = time.gmtime

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        stamp = time.strftime("%Y-%m-%dT%H:%M:%S", self.converter(record.created))
        return f"{stamp}.{int(record.msecs):03d}Z"


def _level(name: str, default: int = logging.INFO) -> int:
    value = logging.getLevelName(name.upper())
    return value if isinstance(value, int) else default


def init(
    component: str,
    log_dir: Path,
    *,
    level: str = "INFO",
    foreground: bool = False,
    log_levels: dict[str, str] | None = None,
) -> Path:
    """Route the root logger to ``<log_dir>/<component>.log``.

    Returns the log file path. ``log_levels`` maps logger names to level
    names, e.g. ``{"vtslink.auth": "DEBUG"}``.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{component}.log"

    file_handler = RotatingFileHandler(
        log_file, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8"
    )
    file_handler.setFormatter(_UtcFormatter(_FMT))
    handlers: list[logging.Handler] = [file_handler]
    if foreground:
        handlers.append(RichHandler(show_path=False, rich_tracebacks=True))

    root = logging.getLogger()
    root.setLevel(_level(level))
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    for handler in handlers:
        root.addHandler(handler)

    for name in _QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)
    for name, value in (log_levels or {}).items():
        logging.getLogger(name).setLevel(_level(value))
    return log_file


def init_from_config(
    config: Config, component: str, *, verbose: bool = False, foreground: bool = True
) -> Path:
    return init(
        component,
        resolve_log_dir(config),
        level="DEBUG" if verbose else "INFO",
        foreground=foreground,
        log_levels=config.log_levels or None,
    )
