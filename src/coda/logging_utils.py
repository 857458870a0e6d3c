from __future__ import annotations

import logging
import os
import sys
import warnings
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 3

# Third-party loggers and the level they are pinned to. urllib3 logs request
# headers, including bearer tokens, at debug.
_LIBRARY_LEVELS = {
    "pywebview": logging.INFO,
    "urllib3": logging.INFO,
}

_session_log_dir: Path | None = None


def is_dev_mode() -> bool:
    return os.environ.get("CODA_DEV", "").lower() in {"1", "true", "yes"}


def configure_logging(app_name: str = "coda", debug: bool | None = None) -> Path:
    """Route logs to a per-session rotating file and the console.

    Debug mode (``CODA_DEV`` or ``debug=True``) logs at DEBUG into ``./logs``;
    otherwise INFO into ``~/.<app_name>/logs``. Safe to call more than once.
    """
    dev = is_dev_mode() if debug is None else debug
    level = logging.DEBUG if dev else logging.INFO
    log_dir = get_session_log_dir(app_name, dev)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"{app_name}.log"

    root = logging.getLogger()
    root.setLevel(level)
    for handler in _missing_handlers(root, log_path):
        handler.setLevel(level)
        root.addHandler(handler)

    logging.captureWarnings(True)
    warnings.simplefilter("default")
    for name, library_level in _LIBRARY_LEVELS.items():
        library_logger = logging.getLogger(name)
        library_logger.setLevel(library_level)
        library_logger.propagate = True

    sys.excepthook = _log_uncaught
    root.info("logging initialized at %s (level %s)", log_path, logging.getLevelName(level))
    return log_path


def _missing_handlers(root: logging.Logger, log_path: Path) -> list[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = []
    if not any(getattr(handler, "baseFilename", None) == str(log_path) for handler in root.handlers):
        handlers.append(
            RotatingFileHandler(log_path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8")
        )
    # FileHandler subclasses StreamHandler; only a plain console handler counts.
    if not any(type(handler) is logging.StreamHandler for handler in root.handlers):
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def _log_uncaught(exc_type, exc_value, exc_traceback) -> None:  # type: ignore[no-untyped-def]
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logging.getLogger("coda").critical("uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))


def get_log_dir(app_name: str, force_dev: bool | None = None) -> Path:
    if force_dev is None:
        force_dev = is_dev_mode()
    if force_dev:
        return Path.cwd() / "logs"
    return Path.home() / f".{app_name}" / "logs"


def get_session_log_dir(app_name: str, force_dev: bool | None = None) -> Path:
    """Return the log directory for this process, fixed on first call."""
    global _session_log_dir
    if _session_log_dir is None:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        _session_log_dir = get_log_dir(app_name, force_dev) / stamp
    return _session_log_dir
