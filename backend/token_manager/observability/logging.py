"""Logging configuration with request context."""

from __future__ import annotations

import logging
from logging.handlers import SysLogHandler

from opentelemetry import trace

from token_manager.config import Settings, get_settings
from token_manager.observability.request_context import get_request_id, get_task_id

LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s request_id=%(request_id)s task_id=%(task_id)s "
    "trace_id=%(trace_id)s span_id=%(span_id)s %(message)s"
)


class RequestIdFilter(logging.Filter):
    """Attach request id, broker task id and the active span to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        span = trace.get_current_span()
        span_context = span.get_span_context()
        if span_context and span_context.is_valid:
            record.trace_id = format(span_context.trace_id, "032x")
            record.span_id = format(span_context.span_id, "016x")
        else:
            record.trace_id = "-"
            record.span_id = "-"
        record.request_id = get_request_id() or "-"
        record.task_id = get_task_id() or "-"
        return True


def configure_logging(settings: Settings | None = None) -> None:
    """Configure root logging from LOG_LEVEL, optionally forwarding to syslog."""
    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT)
    root_logger = logging.getLogger()
    request_filter = RequestIdFilter()
    # Filters on the logger do not see records propagated from child loggers
    for handler in root_logger.handlers:
        handler.addFilter(request_filter)

    if settings.syslog_host:
        syslog_handler = SysLogHandler(address=(settings.syslog_host, settings.syslog_port))
        syslog_handler.setLevel(logging.INFO)
        syslog_handler.setFormatter(logging.Formatter("%(name)s %(levelname)s %(message)s"))
        root_logger.addHandler(syslog_handler)
