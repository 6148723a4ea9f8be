"""
Structured JSON Logging Configuration

Provides centralized logging configuration with:
- JSON formatted output for machine parsing
- Correlation ID tracking via contextvars (HTTP request or worker unit)
- File rotation (7 files, 100MB max)
- Configurable log levels via environment
"""
import logging
import logging.handlers
import os
import contextvars
import re
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, Optional
from pythonjsonlogger import jsonlogger

from app.core.config import settings

# Correlation id for the current HTTP request or unit of worker work
request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'request_id', default=None
)

SERVICE_NAME = "access-graph"

# Application version (can be overridden)
APP_VERSION = "1.0.0"

# Log directory configuration
LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), 'data', 'logs')


class RequestIdFilter(logging.Filter):
    """
    Logging filter that adds request_id to all log records.

    Uses contextvars to access the current correlation id, so every log
    line emitted while handling one upload, one friendship acceptance or
    one change-feed batch can be grouped together.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


class SanitizingFilter(logging.Filter):
    """
    Filter that sanitizes log messages to prevent log injection attacks.

    Object keys and display names are user-controlled and end up in log
    messages; CR/LF are flattened so they cannot forge entries.
    """

    DANGEROUS_PATTERNS = [
        (r'\r\n', ' '),
        (r'\n', ' '),
        (r'\r', ' '),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            for pattern, replacement in self.DANGEROUS_PATTERNS:
                record.msg = re.sub(pattern, replacement, record.msg)

        if record.args:
            sanitized_args = []
            for arg in record.args:
                if isinstance(arg, str):
                    sanitized = arg
                    for pattern, replacement in self.DANGEROUS_PATTERNS:
                        sanitized = re.sub(pattern, replacement, sanitized)
                    sanitized_args.append(sanitized)
                else:
                    sanitized_args.append(arg)
            record.args = tuple(sanitized_args)

        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    Custom JSON formatter that adds standard fields to all log entries.

    Output format:
    {
        "timestamp": "2026-03-02T10:30:00.000Z",
        "level": "INFO",
        "message": "Recipient edge created",
        "service": "access-graph",
        "stage": "dev",
        "module": "recipient_graph_service",
        "request_id": "uuid-here",
        "logger": "app.services.recipient_graph_service",
        ...extra fields...
    }
    """

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get('timestamp'):
            log_record['timestamp'] = datetime.now(timezone.utc).isoformat()

        log_record['level'] = record.levelname
        log_record['service'] = SERVICE_NAME
        log_record['stage'] = settings.STAGE_NAME
        log_record['module'] = record.module
        log_record['logger'] = record.name
        log_record['request_id'] = getattr(record, 'request_id', '-')

        if record.funcName:
            log_record['function'] = record.funcName

        if 'message' not in log_record:
            log_record['message'] = record.getMessage()


def setup_logging(
    log_level: Optional[str] = None,
    log_dir: Optional[str] = None,
    app_version: Optional[str] = None
) -> logging.Logger:
    """
    Configure application-wide logging with JSON format and rotation.

    Args:
        log_level: Override log level (default from settings.LOG_LEVEL)
        log_dir: Override log directory (default: settings.LOG_DIR or backend/data/logs)
        app_version: Application version to include in startup logs

    Returns:
        Root logger configured for the application
    """
    global APP_VERSION

    level = getattr(logging, (log_level or settings.LOG_LEVEL).upper(), logging.INFO)
    directory = log_dir or settings.LOG_DIR or LOG_DIR
    if app_version:
        APP_VERSION = app_version

    os.makedirs(directory, exist_ok=True)

    json_formatter = CustomJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(json_formatter)
    console_handler.addFilter(RequestIdFilter())
    console_handler.addFilter(SanitizingFilter())
    root_logger.addHandler(console_handler)

    log_file = os.path.join(directory, 'app.log')
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=100 * 1024 * 1024,  # 100MB
        backupCount=7,
        encoding='utf-8'
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(json_formatter)
    file_handler.addFilter(RequestIdFilter())
    file_handler.addFilter(SanitizingFilter())
    root_logger.addHandler(file_handler)

    # Data-integrity anomalies and dead letters land here for investigation
    error_log_file = os.path.join(directory, 'error.log')
    error_handler = logging.handlers.RotatingFileHandler(
        error_log_file,
        maxBytes=50 * 1024 * 1024,  # 50MB
        backupCount=5,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(json_formatter)
    error_handler.addFilter(RequestIdFilter())
    error_handler.addFilter(SanitizingFilter())
    root_logger.addHandler(error_handler)

    # Suppress noisy third-party loggers
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the application's configuration.

    Args:
        name: Logger name (typically __name__ from the calling module)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def set_request_id(request_id: Optional[str]) -> contextvars.Token:
    """
    Set the correlation ID for the current context.

    Returns:
        Token that can be used to reset the context
    """
    return request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    """Get the current correlation ID from context, or None if not set."""
    return request_id_var.get()


def clear_request_id(token: contextvars.Token) -> None:
    """Clear the correlation ID context using the token from set_request_id."""
    request_id_var.reset(token)


@contextmanager
def work_unit(prefix: str, unit_id: Optional[str] = None) -> Generator[str, None, None]:
    """
    Tag all logs inside the block with a correlation id for one unit of work.

    Nested inside an HTTP request the request's id is kept, so a trigger
    received over HTTP stays correlated with its worker logs.

    Usage:
        with work_unit("upload", content_id):
            await engine.process_content(content_id)
    """
    existing = request_id_var.get()
    if existing:
        yield existing
        return

    correlation_id = f"{prefix}:{unit_id or uuid.uuid4()}"
    token = set_request_id(correlation_id)
    try:
        yield correlation_id
    finally:
        clear_request_id(token)


def sanitize_log_value(value: str) -> str:
    """
    Sanitize a value for safe logging, preventing log injection.

    Args:
        value: String value to sanitize

    Returns:
        Sanitized string safe for logging
    """
    if not isinstance(value, str):
        return str(value)

    sanitized = value.replace('\r\n', ' ').replace('\n', ' ').replace('\r', ' ')

    max_length = 10000
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + '...[truncated]'

    return sanitized
