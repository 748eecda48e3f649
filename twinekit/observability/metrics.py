"""Prometheus metrics emitted by twine pipelines.

All metrics are created here so import order doesn't matter.  Labels use the
resource service and template names, which are bounded by the code that
declares them.
"""
from prometheus_client import Counter, Histogram, make_asgi_app

# ── Transport ────────────────────────────────────────────────────────────────
DOWNSTREAM_REQUESTS_TOTAL = Counter(
    "twine_downstream_requests_total",
    "Transport calls issued by twine pipelines",
    ["service", "protocol", "method"],
)

DOWNSTREAM_ERRORS_TOTAL = Counter(
    "twine_downstream_errors_total",
    "Transport calls that ended in a remote fault",
    ["service", "error_type"],
)

# ── Resilience policies ──────────────────────────────────────────────────────
RETRY_ATTEMPTS = Counter(
    "twine_retry_attempts_total",
    "Number of retry attempts scheduled by a retry policy",
    ["service", "template"],
)

RETRY_FALLBACKS = Counter(
    "twine_retry_fallbacks_total",
    "Retry policies that exhausted their attempts and used a fallback",
    ["service", "template"],
)

TIMEOUTS_TOTAL = Counter(
    "twine_timeouts_total",
    "Timeout policy deadlines breached",
    ["service", "template"],
)

NODES_MARKED_DOWN = Counter(
    "twine_nodes_marked_down_total",
    "Nodes reported to a cluster after a remote fault",
    ["service"],
)

# ── Completed requests (PrometheusInstrumentor) ──────────────────────────────
COMPLETED_REQUESTS_TOTAL = Counter(
    "twine_completed_requests_total",
    "Request executions that finished, including retries",
    ["app", "service", "template", "outcome"],
)

REQUEST_DURATION = Histogram(
    "twine_request_duration_seconds",
    "End to end duration of a request execution, including retries",
    ["app", "service", "template"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30],
)

SERVER_REQUESTS_TOTAL = Counter(
    "twine_server_requests_total",
    "Inbound requests fulfilled by this application",
    ["app", "outcome"],
)

# ASGI app to mount at /metrics
metrics_app = make_asgi_app()
