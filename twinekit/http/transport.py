"""Transport collaborator: issues one fully resolved request.

The engine never assumes a concrete transport; it only needs
``send(TransportRequest, context) -> TransportResponse``.  ``HttpxTransport``
is the default, sharing one pooled ``httpx.AsyncClient`` per transport so
connections are kept alive between attempts and requests.
"""
from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx

from twinekit.config import TwineSettings
from twinekit.pipeline import keys
from twinekit.pipeline.context import ExecutionContext

logger = logging.getLogger(__name__)


@dataclass
class TransportRequest:
    protocol: str
    host: str
    port: Optional[int]
    path: str
    method: str
    headers: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    timeout: float = 0           # milliseconds; 0 = no limit

    @property
    def url(self) -> str:
        netloc = f"{self.host}:{self.port}" if self.port else self.host
        return f"{self.protocol}://{netloc}{'/' + self.path if self.path else ''}"


@dataclass
class TransportResponse:
    status_code: int
    status_text: str
    headers: Mapping[str, str]
    get_content: Callable[[], Awaitable[Any]]


class AbstractTransport(abc.ABC):
    @abc.abstractmethod
    async def send(self, request: TransportRequest, context: ExecutionContext) -> TransportResponse:
        """Issue *request*; raise on transport-level failure."""

    async def aclose(self) -> None:
        pass


class HttpxTransport(AbstractTransport):
    """Transport over a pooled ``httpx.AsyncClient``.

    Args:
        client: optional preconfigured client (e.g. with an ``httpx.MockTransport``)
        settings: supplies the default connect timeout
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[TwineSettings] = None,
    ) -> None:
        self._client = client
        self._settings = settings or TwineSettings.from_env()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                limits=httpx.Limits(max_keepalive_connections=20),
            )
        return self._client

    def _timeout(self, request: TransportRequest, context: ExecutionContext) -> httpx.Timeout:
        connect_ms = context.get(keys.CONNECT_TIMEOUT) or self._settings.connect_timeout_ms
        overall = request.timeout / 1000 if request.timeout else None
        return httpx.Timeout(overall, connect=connect_ms / 1000)

    async def send(self, request: TransportRequest, context: ExecutionContext) -> TransportResponse:
        body = request.body
        if isinstance(body, str):
            body = body.encode("utf-8")

        outgoing = self.client.build_request(
            request.method or "GET",
            request.url,
            headers={name: str(value) for name, value in (request.headers or {}).items()},
            content=body,
            timeout=self._timeout(request, context),
        )
        response = await self.client.send(outgoing, stream=True)

        async def get_content() -> str:
            try:
                await response.aread()
            finally:
                await response.aclose()
            return response.text

        return TransportResponse(
            status_code=response.status_code,
            status_text=response.reason_phrase,
            headers=response.headers,
            get_content=get_content,
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


_default_transport: Optional[HttpxTransport] = None


def default_transport() -> HttpxTransport:
    """Process-wide pooled transport used when a service names none."""
    global _default_transport
    if _default_transport is None:
        _default_transport = HttpxTransport()
    return _default_transport
