"""Request templates: per-endpoint configuration layered over a service snapshot."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Sequence, Union

from twinekit.http.components import (
    accept_json_component,
    basic_auth_component,
    bearer_token_component,
    form_body_component,
    header_component,
    json_body_component,
    raw_body_component,
    uri_template_component,
)
from twinekit.http.dispatch import ResponseHandler, Transform, handler_component
from twinekit.pipeline import keys
from twinekit.pipeline.builder import Pipeline, PipelineBuilder
from twinekit.pipeline.errors import TwineConfigurationError, ensure
from twinekit.resilience.retry import RetryPolicy, retry_component
from twinekit.resilience.timeout import timeout_component
from twinekit.tracing.instrumentation import AbstractInstrumentor

if TYPE_CHECKING:
    from twinekit.requests.request import Request
    from twinekit.requests.service import ResourceService

_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"})


class InstrumentableRequestTemplate:
    """Forces an explicit choice about instrumentation before a template is usable."""

    def __init__(self, service: "ResourceService", name: str) -> None:
        ensure(name, "A request template needs a non-empty name.", None, service)
        self.service = service
        self.template_name = name

    @property
    def identifier(self) -> str:
        return f"{self.service.service_name} :: {self.template_name}"

    def with_instrumentation(self, instrumentor: AbstractInstrumentor) -> "RequestTemplate":
        if not isinstance(instrumentor, AbstractInstrumentor):
            raise TwineConfigurationError(
                "with_instrumentation expects an AbstractInstrumentor instance", None, self
            )
        return self._create_request_template(instrumentor)

    def without_instrumentation(self) -> "RequestTemplate":
        return self._create_request_template(None)

    def _create_request_template(self, instrumentor: Optional[AbstractInstrumentor]) -> "RequestTemplate":
        return RequestTemplate(
            self.service.compile(),
            self.service.service_name,
            self.template_name,
            instrumentor,
        )


class RequestTemplate(PipelineBuilder):
    """Fluent builder for one endpoint of a resource service.

    Components wrap what was registered before them.  Register response
    handlers before ``with_retry_policy`` / ``with_timeout`` so each attempt
    is dispatched inside the policy.
    """

    def __init__(
        self,
        service_pipeline: Pipeline,
        service_name: str,
        template_name: str,
        instrumentor: Optional[AbstractInstrumentor] = None,
    ) -> None:
        super().__init__()
        self.service_name = service_name
        self.template_name = template_name
        self.instrumentor = instrumentor
        self.add_pipeline(service_pipeline)
        self.add_context_value(keys.REQUEST_TEMPLATE_NAME, template_name)
        self.add_context_value(keys.RESOURCE_SERVICE_NAME, service_name)

    @property
    def identifier(self) -> str:
        return f"{self.service_name} :: {self.template_name}"

    # ── Request shaping ──────────────────────────────────────────────────────
    def with_method(self, method: str) -> "RequestTemplate":
        ensure(isinstance(method, str) and method.upper() in _METHODS, f"Unsupported HTTP method: {method!r}", None, self)
        return self.add_context_value(keys.REQUEST_METHOD, method.upper())

    def with_uri_template(self, template_provider: Any) -> "RequestTemplate":
        return self.add_component(uri_template_component(template_provider, self))

    def with_header(self, name: str, provider: Any) -> "RequestTemplate":
        return self.add_component(header_component(name, provider, builder=self))

    def with_bearer_token(self, provider: Any) -> "RequestTemplate":
        return self.add_component(bearer_token_component(provider, self))

    def with_basic_auth(self, username_provider: Any, password_provider: Any) -> "RequestTemplate":
        return self.add_component(basic_auth_component(username_provider, password_provider))

    def with_request_timeout(self, milliseconds: int) -> "RequestTemplate":
        ensure(isinstance(milliseconds, int) and milliseconds >= 0, "Request timeout must be a non-negative integer.", None, self)
        return self.add_context_value(keys.REQUEST_TIMEOUT, milliseconds)

    # ── Media ────────────────────────────────────────────────────────────────
    def sends_json(self) -> "RequestTemplate":
        return self.add_component(json_body_component())

    def receives_json(self) -> "RequestTemplate":
        return self.add_component(accept_json_component())

    def using_json(self) -> "RequestTemplate":
        return self.sends_json().receives_json()

    def sends_form_data(self) -> "RequestTemplate":
        return self.add_component(form_body_component())

    def sends_raw(self, content_type: Optional[str] = None) -> "RequestTemplate":
        return self.add_component(raw_body_component(content_type))

    # ── Response handling ────────────────────────────────────────────────────
    def handle_when(
        self,
        predicate: Any,
        transforms: Union[Transform, Sequence[Transform], None] = None,
    ) -> "RequestTemplate":
        handler = ResponseHandler(predicate, transforms, self.identifier)
        return self.add_handler(handler)

    def add_handler(self, handler: ResponseHandler) -> "RequestTemplate":
        if not isinstance(handler, ResponseHandler):
            raise TwineConfigurationError("add_handler expects a ResponseHandler", None, self)
        return self.add_component(handler_component(handler))

    # ── Policies ─────────────────────────────────────────────────────────────
    def with_retry_policy(self, policy: Optional[RetryPolicy] = None, **options: Any) -> "RequestTemplate":
        """Accept a RetryPolicy, or its fields as keyword arguments."""
        if policy is None:
            policy = RetryPolicy(**options)
        elif options:
            raise TwineConfigurationError("Pass either a RetryPolicy or keyword options, not both", None, self)
        return self.add_component(retry_component(policy))

    def with_timeout(self, milliseconds: int, cancel_on_timeout: bool = True) -> "RequestTemplate":
        """Fail the attempt with TimeoutFault once ``milliseconds`` elapse.

        With ``cancel_on_timeout=False`` the abandoned attempt keeps running and
        still writes into the shared context (fault flag, response keys, handler
        claims).  Under an outer retry policy those writes can land in the middle
        of the next attempt, so keep cancellation on when combining the two.
        """
        return self.add_component(timeout_component(milliseconds, cancel_on_timeout))

    # ── Requests ─────────────────────────────────────────────────────────────
    def create_request(self) -> "Request":
        from twinekit.requests.request import Request

        return Request(self.build(), self.identifier, self.instrumentor)
