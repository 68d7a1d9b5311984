"""
Structured Logging Configuration.

Provides JSON-structured logging for production observability.
Logs include context like equipment id, algorithm family, and model version.

Usage:
    from fleetpredict.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Model loaded", extra={"model_version": "rf-engine-v3"})
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fleetpredict.config import settings


# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
})


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class JSONFormatter(logging.Formatter):
    """
    Formats log records as JSON for structured logging.

    Output format is compatible with common log aggregation services.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread": record.threadName,
        }

        log_entry["app"] = {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
        }

        extra_fields = _extra_fields(record)
        if extra_fields:
            log_entry["context"] = extra_fields

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class TextFormatter(logging.Formatter):
    """
    Human-readable text formatter for development.

    Provides colorized output when running in a terminal.
    """

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as colored text."""
        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET if color else ""

        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        message = f"{timestamp} | {color}{record.levelname:8}{reset} | {record.name} | {record.getMessage()}"

        extra_fields = _extra_fields(record)
        if extra_fields:
            context_str = " | ".join(f"{k}={v}" for k, v in extra_fields.items())
            message += f" | {context_str}"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


def setup_logging(
    level: Optional[str] = None,
    format_type: Optional[str] = None,
) -> None:
    """
    Configure the root logger with appropriate handlers.

    Args:
        level: Log level (DEBUG, INFO, etc.). Defaults to config.
        format_type: Output format (json, text). Defaults to config.
    """
    level = level or settings.LOG_LEVEL
    format_type = format_type or settings.LOG_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if format_type.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Ensures logging is configured on first call.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Configured logger instance.
    """
    if not logging.getLogger().handlers:
        setup_logging()

    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds consistent context to all log messages.

    The hybrid combiner binds the equipment and organization ids of the
    call so every line of one prediction can be correlated.

    Example:
        base_logger = get_logger(__name__)
        logger = LoggerAdapter(base_logger, {"equipment_id": "eq-1"})
        logger.info("Predicting")  # Will include equipment_id in output
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Add extra context to the log record."""
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


class EventLogger:
    """
    Convenience class for logging key prediction events.

    Provides type-safe methods for common events with
    consistent field names for querying.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        """Initialize with an optional logger."""
        self._logger = logger or get_logger("fleetpredict.events")

    def model_resolved(
        self,
        org_id: str,
        equipment_type: str,
        algorithm: str,
        model_version: Optional[str],
        validation_score: Optional[float] = None,
    ) -> None:
        """Log the outcome of a registry lookup."""
        self._logger.info(
            "Model resolved" if model_version else "No model found",
            extra={
                "event": "model_resolved",
                "org_id": org_id,
                "equipment_type": equipment_type,
                "algorithm": algorithm,
                "model_version": model_version,
                "validation_score": validation_score,
            }
        )

    def model_loaded(
        self,
        algorithm: str,
        model_version: str,
        path: str,
        load_time_ms: Optional[float] = None,
    ) -> None:
        """Log model loading event."""
        self._logger.info(
            "Model loaded",
            extra={
                "event": "model_loaded",
                "algorithm": algorithm,
                "model_version": model_version,
                "path": path,
                "load_time_ms": load_time_ms,
            }
        )

    def inference_completed(
        self,
        equipment_id: str,
        algorithm: str,
        model_version: str,
        outcome: float,
        confidence: float,
        duration_ms: float,
    ) -> None:
        """Log inference completion."""
        self._logger.info(
            "Inference completed",
            extra={
                "event": "inference_completed",
                "equipment_id": equipment_id,
                "algorithm": algorithm,
                "model_version": model_version,
                "outcome": outcome,
                "confidence": confidence,
                "duration_ms": duration_ms,
            }
        )

    def prediction_degraded(
        self,
        equipment_id: str,
        available: str,
        unavailable: str,
        combined_confidence: float,
    ) -> None:
        """Log a hybrid prediction that fell back to a single model."""
        self._logger.warning(
            "Prediction degraded",
            extra={
                "event": "prediction_degraded",
                "equipment_id": equipment_id,
                "available": available,
                "unavailable": unavailable,
                "combined_confidence": combined_confidence,
            }
        )

    def prediction_unavailable(
        self,
        equipment_id: str,
        reason: str,
    ) -> None:
        """Log a hybrid prediction that could not be produced."""
        self._logger.info(
            "Prediction unavailable",
            extra={
                "event": "prediction_unavailable",
                "equipment_id": equipment_id,
                "reason": reason,
            }
        )


# Singleton event logger
event_logger = EventLogger()
