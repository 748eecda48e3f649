"""twinekit: resilient outbound request pipelines.

    service = create_resource_service("Inventory").using_https().using_service_resolver("inventory.internal")
    template = (
        service.create_request_template("GetItem")
        .without_instrumentation()
        .with_method("GET")
        .with_uri_template("items/{id}")
        .handle_when(200, Receives.json)
        .with_retry_policy(max_auto_retries=2, delay_retry_for_milliseconds=50)
        .with_timeout(1000)
    )
    item = await template.create_request().with_parameters({"id": 7}).execute(server_context)
"""

from .config import TwineSettings
from .http import (
    AbstractTransport,
    HttpxTransport,
    Receives,
    ResponseHandler,
    TransportRequest,
    TransportResponse,
)
from .pipeline import (
    ExecutionContext,
    NoNodesAvailable,
    Pipeline,
    PipelineBuilder,
    RemoteFault,
    TimeoutFault,
    TransformError,
    TwineConfigurationError,
    TwineError,
    UnhandledStatus,
)
from .requests import InstrumentableRequestTemplate, Request, RequestTemplate, ResourceService
from .resilience import (
    AbstractCluster,
    EscalateWith,
    RedisCluster,
    RetryPolicy,
    RetryWhen,
    ServiceNode,
    StaticCluster,
)
from .tracing import (
    AbstractInstrumentor,
    LoggingInstrumentor,
    PrometheusInstrumentor,
    ServerContext,
    TraceContext,
)

__version__ = "0.1.0"


def create_resource_service(name: str) -> ResourceService:
    return ResourceService(name)


__all__ = [
    "create_resource_service",
    "TwineSettings",
    "ResourceService",
    "InstrumentableRequestTemplate",
    "RequestTemplate",
    "Request",
    "ExecutionContext",
    "Pipeline",
    "PipelineBuilder",
    "AbstractTransport",
    "HttpxTransport",
    "TransportRequest",
    "TransportResponse",
    "Receives",
    "ResponseHandler",
    "RetryPolicy",
    "RetryWhen",
    "EscalateWith",
    "AbstractCluster",
    "StaticCluster",
    "RedisCluster",
    "ServiceNode",
    "AbstractInstrumentor",
    "PrometheusInstrumentor",
    "LoggingInstrumentor",
    "ServerContext",
    "TraceContext",
    "TwineError",
    "RemoteFault",
    "TimeoutFault",
    "UnhandledStatus",
    "TransformError",
    "NoNodesAvailable",
    "TwineConfigurationError",
]
