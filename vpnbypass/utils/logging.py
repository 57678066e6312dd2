"""Structured logging configuration using structlog with file rotation."""

import logging
import os
import sys
from collections import deque
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import TextIO

import structlog


class RecentLogBuffer:
    """structlog processor that keeps the most recent events in memory.

    Status displays read `entries()` instead of tailing the log file.
    """

    def __init__(self, max_entries: int = 100):
        self._entries: deque = deque(maxlen=max_entries)

    def __call__(self, logger, method_name: str, event_dict: dict) -> dict:
        self._entries.appendleft({
            "timestamp": event_dict.get("timestamp") or datetime.now(timezone.utc).isoformat(),
            "level": event_dict.get("level", method_name),
            "event": event_dict.get("event"),
            "logger": event_dict.get("logger_name"),
        })
        return event_dict

    def entries(self) -> list[dict]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()


recent_logs = RecentLogBuffer()


def setup_logging(
    debug: bool = False,
    log_dir: str = "logs",
    log_max_bytes: int = 5_000_000,
    log_backup_count: int = 3,
    stream: TextIO = sys.stdout,
) -> None:
    """Configure structured logging for the engine.

    Logs to `stream` (always) and to a rotating file when the log directory is
    writable. Debug mode renders human-readable console lines, otherwise JSON.
    """
    log_level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            recent_logs,
            structlog.processors.JSONRenderer() if not debug else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicates on re-init
    root_logger.handlers.clear()

    stream_handler = logging.StreamHandler(stream)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(stream_handler)

    try:
        os.makedirs(log_dir, exist_ok=True)
        log_path = os.path.join(log_dir, "vpnbypass.log")
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=log_max_bytes,
            backupCount=log_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(file_handler)
    except OSError:
        # Unwritable log dir: stream only
        pass


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name, logger_name=name)
