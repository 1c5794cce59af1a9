"""
Structured logging for the dashboard state layer.

Uses structlog for JSON-formatted context-aware logging. Stream internals
(python-socketio / engine.io / aiohttp) log through stdlib ``logging`` and
are held at WARNING unless the dashboard itself runs at DEBUG.
"""
import structlog
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Third-party loggers that narrate every polling request
NOISY_LOGGERS = ("socketio", "socketio.client", "engineio", "engineio.client", "aiohttp.access")

DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 5


class _DashboardFileHandler(RotatingFileHandler):
    """Marker type so repeated setup replaces rather than stacks file output."""


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: str | None = None,
    *,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
) -> None:
    """
    Configure structured logging for the dashboard.

    Args:
        log_level: Logging level (DEBUG/INFO/WARNING/ERROR/CRITICAL)
        log_format: Format (json or text)
        log_file: Optional rotating log file (console output is always on)
        max_bytes: Rotation size for ``log_file``
        backup_count: Rotated files kept for ``log_file``
    """
    level = getattr(logging, log_level.upper())

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    logging.root.setLevel(level)

    stream_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(stream_level)

    processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.contextvars.merge_contextvars,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for handler in [h for h in logging.root.handlers if isinstance(h, _DashboardFileHandler)]:
        logging.root.removeHandler(handler)
        handler.close()

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = _DashboardFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        logging.root.addHandler(file_handler)

        get_logger(__name__).info(
            "Logging initialized", log_file=str(log_file), log_level=log_level, log_format=log_format
        )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)
