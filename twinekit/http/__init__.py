"""HTTP glue: transport collaborator, request shaping, response dispatch."""

from .dispatch import (
    ContextPredicate,
    ResponseHandler,
    StatusCode,
    StatusCodeSet,
    handler_component,
    normalize_predicate,
)
from .receives import Receives
from .transport import (
    AbstractTransport,
    HttpxTransport,
    TransportRequest,
    TransportResponse,
    default_transport,
)

__all__ = [
    "ContextPredicate",
    "ResponseHandler",
    "StatusCode",
    "StatusCodeSet",
    "handler_component",
    "normalize_predicate",
    "Receives",
    "AbstractTransport",
    "HttpxTransport",
    "TransportRequest",
    "TransportResponse",
    "default_transport",
]
