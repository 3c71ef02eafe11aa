"""Root log handlers installed by ``configure_logging``."""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Union


class ConsoleHandler(logging.StreamHandler):
    """Writes to stdout, switching to stderr for ERROR and above."""

    def __init__(self, *, split_errors: bool = True) -> None:
        super().__init__(sys.stdout)
        self.split_errors = split_errors

    def emit(self, record: logging.LogRecord) -> None:
        if not (self.split_errors and record.levelno >= logging.ERROR):
            super().emit(record)
            return

        stdout = self.stream
        self.stream = sys.stderr
        try:
            super().emit(record)
        finally:
            self.stream = stdout


class RotatingFileHandler(logging.handlers.RotatingFileHandler):
    """Size-rotated UTF-8 log file; missing parent directories are created."""

    def __init__(
        self,
        filename: Union[str, Path],
        *,
        maxBytes: int = 10485760,
        backupCount: int = 5,
    ) -> None:
        path = Path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(str(path), maxBytes=maxBytes, backupCount=backupCount, encoding="utf-8")
