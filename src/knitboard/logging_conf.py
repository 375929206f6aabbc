from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Server internals that log every request or file event.
QUIET_LOGGERS = ("uvicorn.access", "watchfiles", "nicegui.air")


def configure_logging(level: str = "INFO", *, log_file: Path | None = None) -> None:
    """Configure the root logger: stdout, plus a rotating file when given.

    "2024-01-02 07:30:00 [INFO] knitboard.import_session: Import session for 2024-01-02: ..."
    """
    numeric_level = getattr(logging, str(level).upper(), None)
    invalid = not isinstance(numeric_level, int)
    if invalid:
        numeric_level = logging.INFO

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    # Reconfiguring replaces handlers instead of stacking them.
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if invalid:
        logging.getLogger(__name__).warning("Invalid log level %r, using INFO", level)
