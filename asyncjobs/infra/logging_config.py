"""
Logging configuration module.

The "asyncjobs" logger writes to the console and, optionally, to one file
per calendar day. File names carry the process start time so restarts on
the same day do not share a file.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

LOGGER_NAME = "asyncjobs"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# HHMMSS of the first handler created in this process
_PROCESS_START_TIME: Optional[str] = None


def _today() -> str:
    return datetime.now().strftime("%Y%m%d")


class DailyRotatingFileHandler(logging.FileHandler):
    """
    File handler that switches to a new file when the date changes.

    Files are named logs/asyncjobs_YYYYMMDD_<START_HHMMSS>.log.
    """

    def __init__(self, log_dir: str = "logs", encoding: str = "utf-8"):
        global _PROCESS_START_TIME
        if _PROCESS_START_TIME is None:
            _PROCESS_START_TIME = datetime.now().strftime("%H%M%S")

        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._start_hhmmss = _PROCESS_START_TIME
        self._current_date = _today()

        super().__init__(self._log_path(self._current_date), mode='a', encoding=encoding)

    def _log_path(self, date_str: str) -> str:
        return str(self.log_dir / f"{LOGGER_NAME}_{date_str}_{self._start_hhmmss}.log")

    def emit(self, record: logging.LogRecord) -> None:
        today = _today()
        if today != self._current_date:
            self.close()
            self.baseFilename = self._log_path(today)
            self._current_date = today
            self.stream = self._open()

        super().emit(record)


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = "logs") -> logging.Logger:
    """
    Configure the package logger and return it.

    Modules log through logging.getLogger(__name__), so every logger under
    "asyncjobs" inherits these handlers. Calling this again replaces the
    handlers instead of adding to them.

    Args:
        log_level (str): DEBUG, INFO, WARNING, ERROR or CRITICAL (unknown -> INFO)
        log_dir (str): Directory for daily log files; None logs to console only

    Returns:
        logging.Logger: The configured "asyncjobs" logger
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    logger.handlers.clear()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir is not None:
        handlers.append(DailyRotatingFileHandler(log_dir=log_dir))

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    destination = handlers[-1].baseFilename if log_dir is not None else "console"
    logger.info(f"Logging started - level: {log_level}, output: {destination}")

    return logger
