"""
Logging configuration: console output, plus a rotating file in development.

In dev (DEBUG=True): logs go to console AND <LOG_DIR>/ollama_relay.log (if writable)
In production: console only (container orchestrators capture stdout).
Uvicorn's own loggers are routed through the same handlers so access lines
and relay activity share one format.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from ollama_relay.core.config import settings

LOG_FILE_NAME = "ollama_relay.log"
MAX_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 3
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"

UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")
QUIET_LOGGERS = ("httpcore", "httpx", "websockets", "asyncio")


def _file_handler(log_dir: Path) -> logging.Handler | None:
    log_file = log_dir / LOG_FILE_NAME
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as exc:
        # Read-only containers still get console logging.
        logging.getLogger(__name__).warning(
            "File logging disabled: cannot write to %s (%s)", log_file, exc
        )
        return None
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(level_name: str | None = None, to_file: bool | None = None) -> None:
    """
    Configure the root logger once.

    Args:
        level_name: Overrides LOG_LEVEL.
        to_file: Overrides the DEBUG-based decision to add the rotating file.
    """
    level = getattr(logging, (level_name or settings.LOG_LEVEL).upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)

    # Avoid duplicate handlers on reload
    if root.handlers:
        return

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(console)

    if settings.DEBUG if to_file is None else to_file:
        handler = _file_handler(Path(settings.LOG_DIR))
        if handler is not None:
            root.addHandler(handler)

    for name in UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True

    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
