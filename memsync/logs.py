"""
Logging setup shared by every memsync process.

Each line is prefixed with an ISO-8601 timestamp and passed through the
scrubber after formatting, so secrets never reach the rotating log file or
the console, tracebacks included.
"""

import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path

from .scrub import scrub

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3


class ScrubbingFormatter(logging.Formatter):
    def formatTime(self, record, datefmt=None):
        return datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="milliseconds")

    def format(self, record):
        return scrub(super().format(record))


def configure_logging(log_file: Path | None = None, level: str = "INFO") -> logging.Logger:
    """Install file and stderr handlers on the ``memsync`` logger and return it."""
    logger = logging.getLogger("memsync")
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = ScrubbingFormatter(LOG_FORMAT)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        rfh = logging.handlers.RotatingFileHandler(
            str(log_file), maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8"
        )
        rfh.setFormatter(formatter)
        logger.addHandler(rfh)

    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(logging.WARNING if log_file is not None else logging.INFO)
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    logger.propagate = False
    return logger
