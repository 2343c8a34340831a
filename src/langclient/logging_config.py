"""Logging setup for the client process.

All log output goes to stderr so stdout stays clean for results (and
for the protocol itself when the client is run under a stdio pipe).
Optionally, rotating per-level files are written to a log directory:
langclient-debug.log, langclient-info.log, langclient-error.log.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 30

_FILE_LEVELS = (
    ("debug", logging.DEBUG),
    ("info", logging.INFO),
    ("error", logging.ERROR),
)


def configure_logging(level: int | str = logging.INFO, log_dir: str | Path | None = None) -> None:
    """Configure the root logger.

    Removes any existing root handlers, then installs a stderr handler at
    `level` and, when `log_dir` is given, one rotating file per level.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {level}")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    stderr_handler.setLevel(level)
    root_logger.addHandler(stderr_handler)

    root_level = level
    if log_dir is not None:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        for suffix, file_level in _FILE_LEVELS:
            file_handler = RotatingFileHandler(
                directory / f"langclient-{suffix}.log",
                maxBytes=MAX_BYTES,
                backupCount=BACKUP_COUNT,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(file_level)
            root_logger.addHandler(file_handler)
        root_level = logging.DEBUG

    root_logger.setLevel(min(level, root_level))
