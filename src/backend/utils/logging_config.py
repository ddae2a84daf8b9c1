"""Logging Configuration for Campus Pulse

Vote reconciliation, chat streaming and the HTTP API all log through structlog with
JSON output. One call to setup_logging() at process start routes every event to
logs/backend.log (everything) and stdout (LOG_LEVEL and above).

Usage:
    >>> from src.backend.utils.logging_config import setup_logging, get_logger
    >>> setup_logging()
    >>> logger = get_logger(__name__)
    >>> logger.info("vote_confirmed", target_kind="post", target_id="p-1")
    >>> logger.error("chat_stream_failed", exc_info=True, conversation_id="abc")
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

import structlog

from src.backend.utils.errors import ConfigurationError

DEFAULT_CONSOLE_LEVEL = "INFO"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def resolve_console_level(level: Optional[str] = None) -> int:
    """Return the stdlib level for `level`, or LOG_LEVEL, or INFO.

    Raises:
        ConfigurationError: If the name is not a known level
    """
    name = (level or os.environ.get("LOG_LEVEL") or DEFAULT_CONSOLE_LEVEL).strip().upper()
    if name not in _LEVELS:
        raise ConfigurationError(
            f"Unknown log level '{name}'. Must be one of: {', '.join(_LEVELS)}"
        )
    return _LEVELS[name]


def setup_logging(
    log_dir: str = "logs",
    log_filename: str = "backend.log",
    console_level: Optional[str] = None,
) -> None:
    """Configure structlog with JSON rendering to a log file and stdout.

    Creates log_dir if needed. The file receives DEBUG and above; stdout receives
    console_level (or LOG_LEVEL, default INFO) and above.

    Log entry format (JSON):
        {
            "event": "vote_rolled_back",
            "level": "warning",
            "timestamp": "2026-10-19T12:34:56.789Z",
            "logger": "src.voting",
            "target_id": "p-1",
            ...
        }

    With exc_info=True an "exception" field carries the formatted traceback.
    """
    stdout_level = resolve_console_level(console_level)

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=shared_processors,
    )

    file_handler = logging.FileHandler(str(log_path / log_filename), encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(stdout_level)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)


def get_logger(name: str = None):
    """Get a structlog logger, typically named after the calling module."""
    return structlog.get_logger(name)
