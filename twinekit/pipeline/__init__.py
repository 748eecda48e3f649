"""Pipeline engine: execution context, component composition, errors."""

from .context import ExecutionContext
from .builder import Component, Next, Pipeline, PipelineBuilder
from .errors import (
    NoNodesAvailable,
    RemoteFault,
    TimeoutFault,
    TransformError,
    TwineConfigurationError,
    TwineError,
    UnhandledStatus,
    ensure,
)
from .providers import resolve_provider

__all__ = [
    "ExecutionContext",
    "Component",
    "Next",
    "Pipeline",
    "PipelineBuilder",
    "TwineError",
    "RemoteFault",
    "TimeoutFault",
    "UnhandledStatus",
    "TransformError",
    "NoNodesAvailable",
    "TwineConfigurationError",
    "ensure",
    "resolve_provider",
]
