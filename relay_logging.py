"""Logging configuration helpers for the relay server."""
from __future__ import annotations

import logging
import os
from typing import Any, Optional

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"

_configured = False

# Top-level module/package names whose loggers belong to this project.
PROJECT_LOGGERS = [
    "relay",
    "app",
    "commands",
    "config",
    "db",
    "ledger",
    "reconciler",
    "records",
    "registry",
    "relayer",
    "server",
    "transaction",
    "wallet",
]

THIRD_PARTY_LOGGERS = [
    "asyncio",
    "trio",
    "py_ecc",
    "urllib3",
]


def _coerce_level(level: Optional[Any]) -> int:
    """Translate a human readable level into the logging module's numeric level."""
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        level = level.strip().upper()
        numeric = getattr(logging, level, None)
        if isinstance(numeric, int):
            return numeric
    env_default = os.environ.get("RELAY_LOG_LEVEL", "INFO").strip().upper()
    return getattr(logging, env_default, logging.INFO)


def short_id(value: Optional[str], length: int = 16) -> str:
    """Abbreviate long hex identifiers for log lines."""
    if not value:
        return "<none>"
    return value if len(value) <= length else value[:length] + "..."


def configure(logging_settings: Optional[Any] = None, *, force: bool = True) -> None:
    """Configure logging for project loggers only. Third-party loggers are kept quiet."""
    global _configured
    if _configured and not force:
        return

    level = None
    fmt = None
    datefmt = None

    if logging_settings is not None:
        if isinstance(logging_settings, dict):
            level = logging_settings.get("level")
            fmt = logging_settings.get("format")
            datefmt = logging_settings.get("datefmt")
        else:
            level = getattr(logging_settings, "level", None)
            fmt = getattr(logging_settings, "format", None)
            datefmt = getattr(logging_settings, "datefmt", None)

    level = _coerce_level(level)
    fmt = fmt or os.environ.get("RELAY_LOG_FORMAT", _DEFAULT_FORMAT)
    datefmt = datefmt or os.environ.get("RELAY_LOG_DATEFMT", _DEFAULT_DATEFMT)

    formatter = logging.Formatter(fmt, datefmt)

    # Root stays at WARNING or above; project loggers opt into lower levels.
    root_logger = logging.getLogger()
    root_logger.setLevel(max(logging.WARNING, level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    for pattern in PROJECT_LOGGERS:
        logging.getLogger(pattern).setLevel(level)

    for logger_name in THIRD_PARTY_LOGGERS:
        logging.getLogger(logger_name).setLevel(max(logging.WARNING, level))

    logging.captureWarnings(True)

    _configured = True
