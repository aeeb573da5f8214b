"""Per-run log file and console logging."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "hostdeploy"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
MASK = "********"


class RedactingFilter(logging.Filter):
    """Replace secret values in log records with a mask."""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self.secrets = [s for s in secrets if s]

    def add_secret(self, secret: str) -> None:
        if secret and secret not in self.secrets:
            self.secrets.append(secret)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        for secret in self.secrets:
            message = message.replace(secret, MASK)
        record.msg = message
        record.args = None
        return True


def log_file_name(now: datetime | None = None) -> str:
    """Return the per-run log file name, e.g. ``deploy_20260101_120000.log``."""
    now = now or datetime.now()
    return f"deploy_{now:%Y%m%d_%H%M%S}.log"


def setup_logging(
    log_dir: str | Path = ".",
    console: Console | None = None,
    level: int = logging.INFO,
) -> tuple[Path, RedactingFilter]:
    """Attach console and file handlers to the ``hostdeploy`` logger.

    Returns the log file path and the redaction filter, so secrets that
    are only known later (the access token) can still be masked.
    """
    log_path = Path(log_dir).expanduser() / log_file_name()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    redactor = RedactingFilter()

    console_handler = RichHandler(console=console, show_path=False, markup=False)
    console_handler.setLevel(level)
    console_handler.addFilter(redactor)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    file_handler.addFilter(redactor)

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(console_handler)
    logger.addHandler(file_handler)
    return log_path, redactor
