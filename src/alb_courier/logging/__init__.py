"""
Unified logging for ALB Courier.

Standardized logging with JSON format, correlation IDs, trace ID support
and service context. ``setup_unified_logging`` configures handlers once on
the package logger; every module logger propagates into it.
"""

import json
import logging
import os
import sys
import uuid
from datetime import datetime
from typing import Any

from opentelemetry import trace

PACKAGE_LOGGER_NAME = "alb_courier"
DEFAULT_SERVICE_NAME = "alb-courier"

# Default log format with service name
DEFAULT_LOG_FORMAT = (
    "%(asctime)s - %(levelname)s - [%(service_name)s] - [%(name)s] - "
    "[%(module)s.%(funcName)s:%(lineno)d] - %(message)s"
)

# Enhanced format with trace context
TRACE_LOG_FORMAT = (
    "%(asctime)s - %(levelname)s - [%(service_name)s] - [%(trace_id)s:%(span_id)s] - "
    "[%(name)s] - [%(module)s.%(funcName)s:%(lineno)d] - %(message)s"
)

LOG_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}

DEFAULT_LOG_LEVEL = "INFO"
LOG_OFF_LEVEL = "OFF"

_RESERVED_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
    "service_name",
    "trace_id",
    "span_id",
    "correlation_id",
}


class ServiceNameFilter(logging.Filter):
    """Filter to inject service name into log records."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name  # type: ignore[attr-defined]
        return True


class TraceContextFilter(logging.Filter):
    """Filter to inject trace context into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            record.trace_id = format(span_context.trace_id, "032x")  # type: ignore[attr-defined]
            record.span_id = format(span_context.span_id, "016x")  # type: ignore[attr-defined]
        else:
            record.trace_id = "00000000000000000000000000000000"  # type: ignore[attr-defined]
            record.span_id = "0000000000000000"  # type: ignore[attr-defined]
        return True


class CorrelationFilter(logging.Filter):
    """Filter to inject correlation ID into log records."""

    def __init__(self, correlation_id: str | None = None) -> None:
        super().__init__()
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = self.correlation_id  # type: ignore[attr-defined]
        return True

    def update_correlation_id(self, correlation_id: str) -> None:
        self.correlation_id = correlation_id


class UnifiedJSONFormatter(logging.Formatter):
    """JSON formatter for structured logging with comprehensive context."""

    def __init__(self, include_trace: bool = True, include_correlation: bool = True):
        super().__init__()
        self.include_trace = include_trace
        self.include_correlation = include_correlation

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service_name", "unknown"),
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if self.include_trace:
            trace_id = getattr(record, "trace_id", None)
            span_id = getattr(record, "span_id", None)
            if trace_id and span_id:
                log_entry["trace_id"] = trace_id
                log_entry["span_id"] = span_id

        if self.include_correlation:
            correlation_id = getattr(record, "correlation_id", None)
            if correlation_id:
                log_entry["correlation_id"] = correlation_id

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        # Extra fields passed through ``extra=``
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class CourierLogger:
    """
    Service logger with shift-specific helpers.

    Wraps a standard library logger and adds service context to every
    record. Handlers are only installed when ``configure`` is true; module
    loggers normally rely on ``setup_unified_logging`` having configured the
    package logger.
    """

    def __init__(
        self,
        service_name: str = DEFAULT_SERVICE_NAME,
        module_name: str | None = None,
        configure: bool = False,
        enable_json_logging: bool = True,
        enable_trace_context: bool = True,
        enable_correlation: bool = True,
        correlation_id: str | None = None,
        log_level: str = DEFAULT_LOG_LEVEL,
    ) -> None:
        """
        Initialize the logger.

        Args:
            service_name: Name of the service for context
            module_name: Logger name (typically __name__)
            configure: Install a stdout handler with filters and formatter
            enable_json_logging: Whether to use JSON format
            enable_trace_context: Whether to include trace context
            enable_correlation: Whether to include correlation IDs
            correlation_id: Specific correlation ID to use
            log_level: Logging level
        """
        self.service_name = service_name
        self.module_name = module_name or PACKAGE_LOGGER_NAME
        self.enable_json_logging = enable_json_logging
        self.enable_trace_context = enable_trace_context
        self.enable_correlation = enable_correlation
        self.correlation_filter: CorrelationFilter | None = None

        self._logger = logging.getLogger(self.module_name)
        if configure:
            self._setup_logger(log_level, correlation_id)

        self._service_context = {"service": service_name}

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _setup_logger(self, log_level: str, correlation_id: str | None) -> None:
        self._logger.handlers.clear()

        if log_level != LOG_OFF_LEVEL:
            self._logger.setLevel(LOG_LEVELS.get(log_level.upper(), logging.INFO))
        else:
            self._logger.setLevel(logging.CRITICAL + 1)

        console_handler = logging.StreamHandler(sys.stdout)

        if self.enable_json_logging:
            formatter: logging.Formatter = UnifiedJSONFormatter(
                include_trace=self.enable_trace_context,
                include_correlation=self.enable_correlation,
            )
        else:
            format_string = TRACE_LOG_FORMAT if self.enable_trace_context else DEFAULT_LOG_FORMAT
            formatter = logging.Formatter(format_string)

        console_handler.setFormatter(formatter)
        console_handler.addFilter(ServiceNameFilter(self.service_name))

        if self.enable_trace_context:
            console_handler.addFilter(TraceContextFilter())

        if self.enable_correlation:
            self.correlation_filter = CorrelationFilter(correlation_id)
            console_handler.addFilter(self.correlation_filter)

        self._logger.addHandler(console_handler)
        self._logger.propagate = False

    def update_correlation_id(self, correlation_id: str) -> None:
        if self.correlation_filter is not None:
            self.correlation_filter.update_correlation_id(correlation_id)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_context(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_context(logging.INFO, msg, args, kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_context(logging.WARNING, msg, args, kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_context(logging.ERROR, msg, args, kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("exc_info", True)
        self.error(msg, *args, **kwargs)

    def _log_with_context(
        self, level: int, msg: str, args: tuple[Any, ...], kwargs: dict[str, Any]
    ) -> None:
        extra = kwargs.setdefault("extra", {})
        extra.update(self._service_context)
        self._logger.log(level, msg, *args, **kwargs)

    # Traffic shift lifecycle logging
    def log_shift_started(self, rule_arn: str, current_tg: str, desired_tg: str, **context: Any) -> None:
        info = {
            "rule_arn": rule_arn,
            "current_tg": current_tg,
            "desired_tg": desired_tg,
            "phase": "start",
            **context,
        }
        self.info("Traffic shift started", extra=info)

    def log_state_transition(self, rule_arn: str, from_state: str, to_state: str) -> None:
        self.info(
            f"Shift state {from_state} -> {to_state}",
            extra={"rule_arn": rule_arn, "from_state": from_state, "to_state": to_state},
        )

    def log_weights_written(self, rule_arn: str, weights: dict[str, int], step: int) -> None:
        self.info(
            "Listener rule weights written",
            extra={"rule_arn": rule_arn, "weights": weights, "step": step},
        )

    def log_metric_results(self, rule_arn: str, results: list[dict[str, Any]]) -> None:
        failing = [r for r in results if r.get("outcome") != "pass"]
        extra = {"rule_arn": rule_arn, "metric_results": results}
        if failing:
            self.warning(f"{len(failing)} of {len(results)} metrics not passing", extra=extra)
        else:
            self.info(f"All {len(results)} metrics passing", extra=extra)

    def log_shift_finished(self, rule_arn: str, outcome: str, duration: float, **context: Any) -> None:
        info = {
            "rule_arn": rule_arn,
            "outcome": outcome,
            "duration": duration,
            "phase": "end",
            **context,
        }
        if outcome == "done":
            self.info("Traffic shift finished", extra=info)
        else:
            self.error("Traffic shift failed", extra=info)


def get_courier_logger(module_name: str | None = None, **kwargs: Any) -> CourierLogger:
    """Get a CourierLogger for a module without touching handlers."""
    return CourierLogger(DEFAULT_SERVICE_NAME, module_name, **kwargs)


def setup_unified_logging(
    service_name: str = DEFAULT_SERVICE_NAME,
    log_level: str = DEFAULT_LOG_LEVEL,
    enable_json: bool = True,
    enable_trace: bool = True,
    enable_correlation: bool = True,
) -> CourierLogger:
    """
    Set up logging for the package.

    Should be called early in process startup. LOG_LEVEL, LOG_FORMAT,
    ENABLE_TRACE_LOGGING and ENABLE_CORRELATION_LOGGING override the
    arguments.
    """
    log_level = os.getenv("LOG_LEVEL", log_level)
    enable_json = os.getenv("LOG_FORMAT", "json" if enable_json else "text") == "json"
    enable_trace = os.getenv("ENABLE_TRACE_LOGGING", str(enable_trace)).lower() == "true"
    enable_correlation = (
        os.getenv("ENABLE_CORRELATION_LOGGING", str(enable_correlation)).lower() == "true"
    )

    return CourierLogger(
        service_name=service_name,
        module_name=PACKAGE_LOGGER_NAME,
        configure=True,
        log_level=log_level,
        enable_json_logging=enable_json,
        enable_trace_context=enable_trace,
        enable_correlation=enable_correlation,
    )


__all__ = [
    "CorrelationFilter",
    "CourierLogger",
    "ServiceNameFilter",
    "TraceContextFilter",
    "UnifiedJSONFormatter",
    "get_courier_logger",
    "setup_unified_logging",
]
