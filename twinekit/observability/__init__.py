"""Observability: structured logging, Prometheus metrics, server boundary."""

from .logging import JsonFormatter, setup_logging
from .metrics import (
    DOWNSTREAM_REQUESTS_TOTAL,
    DOWNSTREAM_ERRORS_TOTAL,
    RETRY_ATTEMPTS,
    RETRY_FALLBACKS,
    TIMEOUTS_TOTAL,
    NODES_MARKED_DOWN,
    COMPLETED_REQUESTS_TOTAL,
    REQUEST_DURATION,
    SERVER_REQUESTS_TOTAL,
    metrics_app,
)
from .middleware import ServerContextMiddleware

__all__ = [
    "setup_logging",
    "JsonFormatter",
    "DOWNSTREAM_REQUESTS_TOTAL",
    "DOWNSTREAM_ERRORS_TOTAL",
    "RETRY_ATTEMPTS",
    "RETRY_FALLBACKS",
    "TIMEOUTS_TOTAL",
    "NODES_MARKED_DOWN",
    "COMPLETED_REQUESTS_TOTAL",
    "REQUEST_DURATION",
    "SERVER_REQUESTS_TOTAL",
    "metrics_app",
    "ServerContextMiddleware",
]
