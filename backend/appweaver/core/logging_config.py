"""
AppWeaver - Centralized Logging Configuration
Supports both development (plain text) and production (JSON structured) logging
"""

import logging
import sys
import json
import traceback
import uuid
from datetime import datetime
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Any, Dict
from contextvars import ContextVar

from appweaver.core.config import settings


# Context variables for request/batch tracing
request_id_var: ContextVar[str] = ContextVar('request_id', default='')
message_id_var: ContextVar[str] = ContextVar('message_id', default='')
execution_id_var: ContextVar[str] = ContextVar('execution_id', default='')


def get_request_id() -> str:
    """Get current request ID from context"""
    return request_id_var.get() or ''


def set_request_id(request_id: str) -> None:
    """Set request ID in context"""
    request_id_var.set(request_id)


def get_message_id() -> str:
    """Get current owning message ID from context"""
    return message_id_var.get() or ''


def set_message_id(message_id: str) -> None:
    """Set owning message ID in context"""
    message_id_var.set(message_id)


def get_execution_id() -> str:
    """Get current tool batch execution ID from context"""
    return execution_id_var.get() or ''


def set_execution_id(execution_id: str) -> None:
    """Set tool batch execution ID in context"""
    execution_id_var.set(execution_id)


def generate_request_id() -> str:
    """Generate a unique request ID"""
    return str(uuid.uuid4())[:8]


_RESERVED_RECORD_KEYS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName',
}


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging in production
    Outputs logs in a format easily parsed by log aggregation tools (ELK, CloudWatch, etc.)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = get_request_id()
        if request_id:
            log_data["request_id"] = request_id

        message_id = get_message_id()
        if message_id:
            log_data["message_id"] = message_id

        execution_id = get_execution_id()
        if execution_id:
            log_data["execution_id"] = execution_id

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info) if record.exc_info[0] else None
            }

        # Extra fields passed through `extra=`
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS and not key.startswith('_'):
                log_data.setdefault(key, value)

        return json.dumps(log_data, default=str)


class ContextualFormatter(logging.Formatter):
    """
    Enhanced formatter that includes context variables (request_id, execution_id)
    Used for development with readable output
    """

    def format(self, record: logging.LogRecord) -> str:
        record.request_id = get_request_id() or '-'
        record.message_id = get_message_id() or '-'
        record.execution_id = get_execution_id() or '-'

        return super().format(record)


class AppWeaverLogger(logging.Logger):
    """
    Custom logger with convenience methods for structured logging
    """

    def log_request(self, method: str, path: str, status_code: int,
                    duration_ms: float, **kwargs) -> None:
        """Log HTTP request details"""
        self.info(
            f"HTTP {method} {path} - {status_code} ({duration_ms:.2f}ms)",
            extra={
                "event_type": "http_request",
                "http_method": method,
                "http_path": path,
                "http_status": status_code,
                "duration_ms": duration_ms,
                **kwargs
            }
        )

    def log_tool_event(self, execution_id: str, tool_index: int, event: str,
                       **kwargs) -> None:
        """Log a single tool's lifecycle event inside a batch"""
        self.info(
            f"[ToolCoordinator] Tool {tool_index} in {execution_id}: {event}",
            extra={
                "event_type": "tool",
                "tool_execution_id": execution_id,
                "tool_index": tool_index,
                "tool_event": event,
                **kwargs
            }
        )

    def log_batch_event(self, execution_id: str, event: str, **kwargs) -> None:
        """Log a batch-level event"""
        self.info(
            f"[ToolCoordinator] Batch {execution_id}: {event}",
            extra={
                "event_type": "batch",
                "tool_execution_id": execution_id,
                "batch_event": event,
                **kwargs
            }
        )

    def log_error_with_context(self, error: Exception, context: str = None,
                               **kwargs) -> None:
        """Log error with full context"""
        self.error(
            f"Error in {context}: {type(error).__name__}: {str(error)}",
            exc_info=True,
            extra={
                "event_type": "error",
                "error_type": type(error).__name__,
                "error_message": str(error),
                "error_context": context,
                **kwargs
            }
        )

    def log_performance(self, operation: str, duration_ms: float,
                        threshold_ms: float = 1000, **kwargs) -> None:
        """Log performance metrics, warn if over threshold"""
        level = logging.WARNING if duration_ms > threshold_ms else logging.DEBUG
        self.log(
            level,
            f"Performance: {operation} took {duration_ms:.2f}ms" +
            (f" (threshold: {threshold_ms}ms)" if duration_ms > threshold_ms else ""),
            extra={
                "event_type": "performance",
                "operation": operation,
                "duration_ms": duration_ms,
                "threshold_ms": threshold_ms,
                "exceeded_threshold": duration_ms > threshold_ms,
                **kwargs
            }
        )


DEV_CONSOLE_FORMAT = "%(levelname)-8s | %(message)s"
DEV_FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | "
    "[%(request_id)s] [%(message_id)s] [%(execution_id)s] | "
    "%(funcName)s:%(lineno)d | %(message)s"
)

# Third-party loggers that drown out batch events at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine", "celery.worker.strategy")


def _file_handler(formatter: logging.Formatter, backup_count: int) -> RotatingFileHandler:
    log_file = Path(settings.LOG_FILE)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(log_file, maxBytes=10485760, backupCount=backup_count)  # 10MB
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def setup_logging() -> AppWeaverLogger:
    """
    Configure the "appweaver" logger.

    Production writes one JSON object per line to stdout (and LOG_FILE);
    anything else writes short lines to the console and detailed lines,
    with request/message/execution IDs, to LOG_FILE. API processes and
    Celery workers share this setup.
    """
    logging.setLoggerClass(AppWeaverLogger)

    logger = logging.getLogger("appweaver")
    logger.__class__ = AppWeaverLogger  # Ensure it's our custom class
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    logger.handlers.clear()

    is_production = settings.ENVIRONMENT == "production"
    if is_production:
        console_formatter = file_formatter = JSONFormatter()
        backup_count = 10
    else:
        console_formatter = ContextualFormatter(DEV_CONSOLE_FORMAT)
        file_formatter = ContextualFormatter(DEV_FILE_FORMAT)
        backup_count = 5

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if settings.LOG_FILE:
        logger.addHandler(_file_handler(file_formatter, backup_count))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(
        "Logging initialized",
        extra={
            "environment": settings.ENVIRONMENT,
            "log_level": settings.LOG_LEVEL,
            "json_logging": is_production
        }
    )

    return logger


# Create logger instance
logger: AppWeaverLogger = setup_logging()


__all__ = [
    'logger',
    'setup_logging',
    'get_request_id',
    'set_request_id',
    'get_message_id',
    'set_message_id',
    'get_execution_id',
    'set_execution_id',
    'generate_request_id',
    'AppWeaverLogger',
]
