"""Request: one executable call built from a template."""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from twinekit.http.components import (
    basic_auth_component,
    bearer_token_component,
    header_component,
    uri_template_component,
)
from twinekit.pipeline import keys
from twinekit.pipeline.builder import Component, Next, Pipeline, PipelineBuilder
from twinekit.pipeline.context import ExecutionContext
from twinekit.pipeline.errors import TwineConfigurationError, TwineError, UnhandledStatus, ensure
from twinekit.sdk import SdkCall, wrap_sdk_call_component
from twinekit.tracing.context import ServerContext, TraceContext
from twinekit.tracing.instrumentation import AbstractInstrumentor, instrumentation_component

logger = logging.getLogger(__name__)


async def _ensure_handled(context: ExecutionContext, next_: Next) -> Any:
    await next_()
    if context.handler_executed:
        return None
    if context.is_remote_faulted and context.fault is not None:
        raise context.fault
    raise UnhandledStatus(
        f"No handler exists for status code {context.get(keys.RESPONSE_STATUS_CODE)} in HTTP response.",
        context,
    )


class Request(PipelineBuilder):
    """Per-call values layered over a compiled template.

    ``execute`` compiles a fresh pipeline and context each time, so a Request
    can be executed repeatedly and concurrently.
    """

    def __init__(
        self,
        template_pipeline: Pipeline,
        identifier: str,
        instrumentor: Optional[AbstractInstrumentor] = None,
    ) -> None:
        super().__init__()
        self._identifier = identifier
        self._instrumentor = instrumentor
        self._server_context: Optional[ServerContext] = None
        self._uri_template: Optional[Component] = None
        self.add_pipeline(template_pipeline)

    @property
    def identifier(self) -> str:
        return self._identifier

    # ── Per-call values ──────────────────────────────────────────────────────
    def with_body(self, content: Any) -> "Request":
        return self.add_context_value(keys.REQUEST_CONTENT, content)

    def with_parameters(self, parameters: Mapping[str, Any], strip_nil_values: bool = True) -> "Request":
        ensure(isinstance(parameters, Mapping), "with_parameters expects a mapping", None, self)
        self.add_context_value(keys.REQUEST_PARAMETERS_STRIP_NIL, strip_nil_values)
        return self.add_context_value(keys.REQUEST_PARAMETERS, dict(parameters))

    def with_header(self, name: str, provider: Any) -> "Request":
        return self.add_component(header_component(name, provider, builder=self))

    def with_uri_template(self, template_provider: Any) -> "Request":
        # Expanded after every other per-call value has been applied
        self._uri_template = uri_template_component(template_provider, self)
        return self

    def with_bearer_token(self, provider: Any) -> "Request":
        return self.add_component(bearer_token_component(provider, self))

    def with_basic_auth(self, username_provider: Any, password_provider: Any) -> "Request":
        return self.add_component(basic_auth_component(username_provider, password_provider))

    def wrap_sdk_call(self, sdk_call: SdkCall) -> "Request":
        return self.add_component(wrap_sdk_call_component(sdk_call))

    # ── Trace and server identity ────────────────────────────────────────────
    def add_trace_context(self, trace: Any) -> "Request":
        """Continue an existing flow trace instead of the server context's."""
        if isinstance(trace, Mapping):
            trace = TraceContext(**trace)
        if not isinstance(trace, TraceContext):
            raise TwineConfigurationError("add_trace_context expects a TraceContext", None, self)
        return self.add_context_value(keys.TRACE_INBOUND, trace)

    def with_server_context(self, server_context: ServerContext) -> "Request":
        if not isinstance(server_context, ServerContext):
            raise TwineConfigurationError("with_server_context expects a ServerContext", None, self)
        self._server_context = server_context
        return self

    # ── Execution ────────────────────────────────────────────────────────────
    def _compile(self) -> Pipeline:
        components = list(self._components)
        if self._uri_template is not None:
            components.insert(1, self._uri_template)
        components.append(_ensure_handled)
        if self._instrumentor is not None:
            components.append(instrumentation_component(self._instrumentor, self))
        return Pipeline(components)

    async def execute(self, server_context: Optional[ServerContext] = None) -> Any:
        """Run the request and return the dispatched response content."""
        if server_context is None:
            server_context = self._server_context
        if server_context is None:
            server_context = ServerContext.from_settings()
        context = ExecutionContext({
            keys.REQUEST_INSTANCE: self,
            keys.SERVER_CONTEXT: server_context,
        })

        try:
            await self._compile().invoke(context)
        except TwineError as exc:
            exc.enrich(context)
            self._log_failure(exc, context)
            raise
        except Exception as exc:
            error = TwineError(f"Twine pipeline failed: {exc!r}", context).enrich(context)
            self._log_failure(error, context)
            raise error from exc
        return context.get(keys.RESPONSE_CONTENT)

    def _log_failure(self, error: TwineError, context: ExecutionContext) -> None:
        logger.warning(
            "twine_request_failed",
            extra={
                "service": context.get(keys.RESOURCE_SERVICE_NAME),
                "template": context.get(keys.REQUEST_TEMPLATE_NAME),
                "status_code": error.status_code,
                "error_type": type(error).__name__,
                "error": error.raw_message,
                "trace_id": context.get(keys.TRACE_ORIGIN),
                "span_id": context.get(keys.TRACE_REQUEST),
            },
        )
