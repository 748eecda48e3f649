"""Three-level builders: ResourceService -> RequestTemplate -> Request."""

from .service import ResourceService
from .template import InstrumentableRequestTemplate, RequestTemplate
from .request import Request

__all__ = [
    "ResourceService",
    "InstrumentableRequestTemplate",
    "RequestTemplate",
    "Request",
]
