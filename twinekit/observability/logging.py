"""Structured JSON logging setup.

Every log record includes:
- timestamp (ISO-8601)
- level
- logger name
- app name (from TWINE_INSTRUMENTATION_APP_NAME)
- trace_id / span_id (from the record's extras, else the active OpenTelemetry span)
- message
- any extra kwargs
"""
from __future__ import annotations

import json
import logging
import sys
import time
from typing import Optional

from opentelemetry import trace as otel_trace

from twinekit.config import TwineSettings

_RESERVED = {
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "taskName",
}


class JsonFormatter(logging.Formatter):
    def __init__(self, app_name: Optional[str] = None) -> None:
        super().__init__()
        self._app_name = app_name or "unknown"

    def format(self, record: logging.LogRecord) -> str:
        trace_id = getattr(record, "trace_id", "")
        span_id = getattr(record, "span_id", "")
        if not trace_id:
            ctx = otel_trace.get_current_span().get_span_context()
            if ctx.is_valid:
                trace_id = format(ctx.trace_id, "032x")
                span_id = format(ctx.span_id, "016x")

        log_entry = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created))
                         + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "app": self._app_name,
            "trace_id": trace_id,
            "span_id": span_id,
            "message": record.getMessage(),
        }

        # Merge any extra fields added via extra={} in log calls
        for key, value in record.__dict__.items():
            if key not in _RESERVED and key not in log_entry:
                log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: Optional[str] = None, settings: Optional[TwineSettings] = None) -> None:
    """Configure the root logger to emit structured JSON."""
    settings = settings or TwineSettings.from_env()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(settings.app_name))
    root = logging.getLogger()
    root.handlers = [handler]
    level = level or settings.log_level
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    # httpx logs every request at INFO; the pipeline logs its own outcome
    logging.getLogger("httpx").setLevel(logging.WARNING)
