import logging
import os
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional


_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

MAX_BUFFERED_LOGS = 2000


def _coerce_level(value: Optional[str]) -> int:
    if isinstance(value, str):
        return _LEVELS.get(value.upper().strip(), logging.INFO)
    if isinstance(value, int):
        return value
    return logging.INFO


class LogBuffer(logging.Handler):
    """Bounded in-memory log sink shared by every order-tracker logger.

    Keeps the newest `capacity` entries; older ones are dropped first.
    Safe to emit from the event loop and from worker threads.
    """

    def __init__(self, capacity: int = MAX_BUFFERED_LOGS) -> None:
        super().__init__(level=logging.DEBUG)
        self._entries: Deque[Dict[str, str]] = deque(maxlen=capacity)
        self._guard = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
            entry = {
                "time": stamp.strftime("%H:%M:%S.") + f"{stamp.microsecond // 1000:03d}",
                "level": record.levelname,
                "message": record.getMessage(),
            }
        except Exception:
            self.handleError(record)
            return
        with self._guard:
            self._entries.append(entry)

    def snapshot(self) -> List[Dict[str, str]]:
        with self._guard:
            return list(self._entries)


_BUFFER = LogBuffer()


def log_snapshot() -> List[Dict[str, str]]:
    """Return a copy of the buffered log entries, oldest first."""
    return _BUFFER.snapshot()


def get_logger(name: str) -> logging.Logger:
    """Return a configured stdout logger with consistent formatting.

    - Honors LOG_LEVEL (default INFO) and LOG_FILE (optional path).
    - Also feeds the shared in-memory buffer behind `log_snapshot()`.
    """
    logger = logging.getLogger(f"order_tracker.{name}")
    if getattr(logger, "_order_tracker_configured", False):
        return logger

    level = _coerce_level(os.environ.get("LOG_LEVEL", "INFO"))
    logger.setLevel(level)

    fmt = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    # Optional log file (appends)
    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            fh = logging.FileHandler(log_file, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(formatter)
            logger.addHandler(fh)
        except OSError:
            logger.warning("LOG_FILE could not be opened; continuing without file logging")

    logger.addHandler(_BUFFER)

    # Avoid duplicate logs if imported multiple times
    logger.propagate = False
    setattr(logger, "_order_tracker_configured", True)
    return logger
