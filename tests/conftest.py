"""Shared test doubles: transports, clusters and instrumentors that record calls."""
from __future__ import annotations

import asyncio
from typing import Any, Optional, Union

import pytest

from twinekit import create_resource_service
from twinekit.http.transport import AbstractTransport, TransportRequest, TransportResponse
from twinekit.resilience.loadbalancer import AbstractCluster, ServiceNode
from twinekit.tracing.context import ServerContext
from twinekit.tracing.instrumentation import AbstractInstrumentor

Scripted = Union[tuple, BaseException]


class FakeTransport(AbstractTransport):
    """Replays scripted ``(status, body)`` tuples or exceptions; the last one repeats."""

    def __init__(self, *responses: Scripted, delay: float = 0.0) -> None:
        self.responses = list(responses) or [(200, "")]
        self.delay = delay
        self.calls: list[TransportRequest] = []
        self.cancelled = 0

    async def send(self, request: TransportRequest, context: Any) -> TransportResponse:
        # Headers are shared with the context; keep a copy of what went out
        self.calls.append(TransportRequest(
            protocol=request.protocol,
            host=request.host,
            port=request.port,
            path=request.path,
            method=request.method,
            headers=dict(request.headers),
            body=request.body,
            timeout=request.timeout,
        ))
        index = min(len(self.calls), len(self.responses)) - 1
        scripted = self.responses[index]

        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled += 1
                raise

        if isinstance(scripted, BaseException):
            raise scripted
        status, body = scripted

        async def get_content() -> Any:
            return body

        return TransportResponse(status, "reason", {"content-type": "application/json"}, get_content)


class FakeCluster(AbstractCluster):
    def __init__(self, service_name: str, nodes: list[ServiceNode]) -> None:
        super().__init__(service_name)
        self.nodes = list(nodes)
        self.down: list[ServiceNode] = []

    async def get_nodes(self, context: Any) -> list[ServiceNode]:
        return [node for node in self.nodes if node not in self.down]

    async def mark_node_down(self, node: ServiceNode) -> None:
        self.down.append(node)


class RecordingInstrumentor(AbstractInstrumentor):
    def __init__(self) -> None:
        self.completed: list[dict] = []
        self.server_requests: list[dict] = []

    async def handle_completed_request(self, context, app_name, instance_id, start_time_utc, duration):
        self.completed.append({
            "environment": context.snapshot(),
            "app_name": app_name,
            "instance_id": instance_id,
            "start_time_utc": start_time_utc,
            "duration": duration,
        })

    async def handle_completed_server_request(
        self, app_name, instance_id, start_time_utc, duration, trace_id, span_id, parent_span_id, exception
    ):
        self.server_requests.append({
            "app_name": app_name,
            "trace_id": trace_id,
            "span_id": span_id,
            "parent_span_id": parent_span_id,
            "exception": exception,
        })


class FakeRedis:
    """The subset of redis.asyncio.Redis used by RedisCluster."""

    def __init__(self, fail: bool = False) -> None:
        self.store: dict[str, Any] = {}
        self.expiries: dict[str, int] = {}
        self.fail = fail

    async def mget(self, names: list[str]) -> list[Optional[str]]:
        if self.fail:
            raise ConnectionError("redis unavailable")
        return [self.store.get(name) for name in names]

    async def set(self, name: str, value: str, ex: Optional[int] = None) -> bool:
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.store[name] = value
        self.expiries[name] = ex
        return True


@pytest.fixture
def server_context() -> ServerContext:
    return ServerContext(app_name="test-app", instance_id="test-instance-1")


@pytest.fixture
def make_template():
    """Build an uninstrumented GET template over a FakeTransport."""

    def factory(transport: FakeTransport, service_name: str = "Inventory", template_name: str = "GetItem"):
        service = create_resource_service(service_name).using_https(transport)
        return (
            service.create_request_template(template_name)
            .without_instrumentation()
            .with_method("GET")
        )

    return factory
