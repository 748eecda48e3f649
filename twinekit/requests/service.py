"""ResourceService: connection-level configuration of one logical remote resource."""
from __future__ import annotations

from typing import Any, Optional, Union

from twinekit.http.components import service_resolver_component, transport_component
from twinekit.http.transport import AbstractTransport
from twinekit.pipeline import keys
from twinekit.pipeline.builder import Component, Pipeline, PipelineBuilder
from twinekit.pipeline.errors import TwineConfigurationError, ensure
from twinekit.resilience.loadbalancer import AbstractCluster, ClusterFactory, load_balancing_component
from twinekit.sdk import sdk_component
from twinekit.tracing.propagation import ensure_trace_context


class ResourceService(PipelineBuilder):
    """Builder for the connection-level pipeline shared by all of a service's templates.

    The transport (``using_http``, ``using_https``, ``using_sdk``) always runs
    innermost and settings such as the connect timeout outermost, so the order
    in which they are declared does not matter.  Host resolution components
    run in declaration order, outside the transport.
    """

    def __init__(self, name: str) -> None:
        super().__init__()
        ensure(name, "A resource service needs a non-empty name.")
        self.service_name = name
        self._transport: Optional[Component] = None
        self._context_values: dict[str, Any] = {}

    @property
    def identifier(self) -> str:
        return self.service_name

    # ── Transport ────────────────────────────────────────────────────────────
    def _set_transport(self, component: Component) -> "ResourceService":
        if self._transport is not None:
            raise TwineConfigurationError("A transport was already configured for this service.", None, self)
        self._transport = component
        return self

    def using_http(self, transport: Optional[AbstractTransport] = None) -> "ResourceService":
        return self._set_transport(transport_component("http", transport))

    def using_https(self, transport: Optional[AbstractTransport] = None) -> "ResourceService":
        return self._set_transport(transport_component("https", transport))

    def using_sdk(self, connection_factory: Any = None) -> "ResourceService":
        return self._set_transport(sdk_component(connection_factory))

    # ── Host resolution ──────────────────────────────────────────────────────
    def using_service_resolver(self, resolver: Any) -> "ResourceService":
        return self.add_component(service_resolver_component(resolver))

    def using_load_balancing(self, cluster: Union[AbstractCluster, ClusterFactory]) -> "ResourceService":
        return self.add_component(load_balancing_component(cluster, self.service_name))

    def with_connect_timeout(self, milliseconds: int) -> "ResourceService":
        ensure(isinstance(milliseconds, int) and milliseconds > 0, "Connect timeout must be a positive integer.", None, self)
        self._context_values[keys.CONNECT_TIMEOUT] = milliseconds
        return self

    # ── Templates ────────────────────────────────────────────────────────────
    def compile(self) -> Pipeline:
        """Snapshot the current configuration; later changes don't affect it."""
        components: list[Component] = []
        if self._transport is not None:
            components.append(self._transport)
        components.extend(self._components)
        for key, value in self._context_values.items():
            builder = PipelineBuilder().add_context_value(key, value)
            components.extend(builder._components)
        # Outermost: every attempt gets its own span id
        components.append(ensure_trace_context)
        return Pipeline(components)

    def create_request_template(self, name: str) -> "InstrumentableRequestTemplate":
        from twinekit.requests.template import InstrumentableRequestTemplate

        return InstrumentableRequestTemplate(self, name)
