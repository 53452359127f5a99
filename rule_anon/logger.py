import logging
import sys
from pathlib import Path
from typing import Optional

from concurrent_log_handler import ConcurrentRotatingFileHandler

from rule_anon.common.constants import (
    LOGGER_NAME, LOG_FORMAT, LOG_DATE_FORMAT, LOG_FILE_MAX_BYTES, LOG_FILE_BACKUP_COUNT
)


class Logger:
    """
    Process-wide logger: stdout always, plus one rotating file per run dir.
    Rule sets log from concurrent tasks, the file handler is safe for that.
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            instance = super().__new__(cls)
            instance._setup()
            cls._instance = instance
        return cls._instance

    def _setup(self):
        self.formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
        self.file_handler: Optional[ConcurrentRotatingFileHandler] = None

        self.logger = logging.getLogger(LOGGER_NAME)
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False

        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(self.formatter)
        self.logger.addHandler(stream_handler)

    def add_file_handler(self, log_dir: Path, log_file_name: str):
        # one run dir at a time
        if self.file_handler is not None:
            self.logger.removeHandler(self.file_handler)
            self.file_handler.close()

        log_dir.mkdir(parents=True, exist_ok=True)
        self.file_handler = ConcurrentRotatingFileHandler(
            str(log_dir / log_file_name),
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUP_COUNT,
        )
        self.file_handler.setFormatter(self.formatter)
        self.logger.addHandler(self.file_handler)


def get_logger() -> logging.Logger:
    return Logger().logger


def logger_add_file_handler(log_dir: Path, log_file_name: str):
    Logger().add_file_handler(log_dir=log_dir, log_file_name=log_file_name)


def logger_set_log_level(log_level: int):
    get_logger().setLevel(log_level)
