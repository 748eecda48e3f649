"""Flow trace propagation and instrumentation."""

from .context import (
    PARENT_SPAN_ID_HEADER,
    SPAN_ID_HEADER,
    TRACE_ID_HEADER,
    ServerContext,
    TraceContext,
    generate_trace_id,
    normalize_trace_id,
)
from .instrumentation import (
    AbstractInstrumentor,
    LoggingInstrumentor,
    PrometheusInstrumentor,
    instrumentation_component,
)
from .propagation import current_trace, ensure_trace_context

__all__ = [
    "TRACE_ID_HEADER",
    "SPAN_ID_HEADER",
    "PARENT_SPAN_ID_HEADER",
    "TraceContext",
    "ServerContext",
    "generate_trace_id",
    "normalize_trace_id",
    "AbstractInstrumentor",
    "PrometheusInstrumentor",
    "LoggingInstrumentor",
    "instrumentation_component",
    "current_trace",
    "ensure_trace_context",
]
