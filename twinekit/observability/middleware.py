"""FastAPI middleware that builds the ServerContext for each inbound request."""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from twinekit.config import TwineSettings
from twinekit.tracing.context import PARENT_SPAN_ID_HEADER, ServerContext, TraceContext

if TYPE_CHECKING:
    from twinekit.tracing.instrumentation import AbstractInstrumentor

logger = logging.getLogger(__name__)


class ServerContextMiddleware(BaseHTTPMiddleware):
    """Adopt inbound B3 headers and expose ``request.state.twine_context``.

    Handlers pass the context on to ``Request.execute(server_context=...)`` so
    outbound calls continue the caller's flow trace.
    """

    def __init__(
        self,
        app: Any,
        app_name: Optional[str] = None,
        instance_id: Optional[str] = None,
        instrumentor: Optional["AbstractInstrumentor"] = None,
        settings: Optional[TwineSettings] = None,
    ) -> None:
        super().__init__(app)
        settings = settings or TwineSettings.from_env()
        self._app_name = app_name or settings.app_name
        self._instance_id = instance_id or settings.instance_id
        self._instrumentor = instrumentor

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace = TraceContext.from_headers(request.headers) or TraceContext.begin()
        parent_span_id = request.headers.get(PARENT_SPAN_ID_HEADER)
        request.state.twine_context = ServerContext(
            app_name=self._app_name,
            instance_id=self._instance_id,
            trace=trace,
            parent_span_id=parent_span_id,
        )

        start_time_utc = int(time.time() * 1000)
        start = time.perf_counter()
        status_code = 500
        error: Optional[BaseException] = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as exc:
            error = exc
            raise
        finally:
            elapsed = time.perf_counter() - start
            logger.info(
                "request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": status_code,
                    "duration_ms": round(elapsed * 1000, 2),
                    "trace_id": trace.origin_id,
                    "span_id": trace.parent_id,
                },
            )
            if self._instrumentor is not None:
                await self._instrumentor.handle_completed_server_request(
                    self._app_name,
                    self._instance_id,
                    start_time_utc,
                    int(elapsed * 1e6),
                    trace.origin_id,
                    trace.parent_id,
                    parent_span_id,
                    error,
                )
