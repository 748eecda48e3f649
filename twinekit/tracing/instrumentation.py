"""Instrumentors: the sink for completed-request flow trace information.

An instrumentor is handed every completed Request execution of an
instrumented template (once, after retries) and, at a server boundary, every
fulfilled inbound request.
"""
from __future__ import annotations

import abc
import logging
import time
from typing import Any, Optional

from twinekit.observability.metrics import (
    COMPLETED_REQUESTS_TOTAL,
    REQUEST_DURATION,
    SERVER_REQUESTS_TOTAL,
)
from twinekit.pipeline import keys
from twinekit.pipeline.builder import Component, Next
from twinekit.pipeline.context import ExecutionContext
from twinekit.pipeline.errors import TimeoutFault, TwineConfigurationError
from twinekit.tracing.context import ServerContext

logger = logging.getLogger(__name__)


class AbstractInstrumentor(abc.ABC):
    """Interface between twine and wherever flow trace records are stored."""

    @abc.abstractmethod
    async def handle_completed_request(
        self,
        context: ExecutionContext,
        app_name: str,
        instance_id: str,
        start_time_utc: int,
        duration: int,
    ) -> None:
        """Called once per instrumented Request execution.

        Args:
            context: the final execution context
            app_name: the calling application's name
            instance_id: uniquely identifies this instance of the application
            start_time_utc: request start, milliseconds since epoch
            duration: total duration in microseconds, retries included
        """

    async def handle_completed_server_request(
        self,
        app_name: str,
        instance_id: str,
        start_time_utc: int,
        duration: int,
        trace_id: str,
        span_id: str,
        parent_span_id: Optional[str],
        exception: Optional[BaseException],
    ) -> None:
        """Called by a server boundary just after an inbound request is fulfilled."""
        raise NotImplementedError(f"{type(self).__name__} does not record server requests")


def _outcome(context: ExecutionContext, failed: bool) -> str:
    if failed:
        return "timeout" if isinstance(context.fault, TimeoutFault) else "error"
    return "success"


class PrometheusInstrumentor(AbstractInstrumentor):
    async def handle_completed_request(self, context, app_name, instance_id, start_time_utc, duration):
        service = context.get(keys.RESOURCE_SERVICE_NAME, "unknown")
        template = context.get(keys.REQUEST_TEMPLATE_NAME, "unknown")
        failed = not context.handler_executed
        COMPLETED_REQUESTS_TOTAL.labels(
            app=app_name, service=service, template=template, outcome=_outcome(context, failed)
        ).inc()
        REQUEST_DURATION.labels(app=app_name, service=service, template=template).observe(duration / 1e6)

    async def handle_completed_server_request(
        self, app_name, instance_id, start_time_utc, duration, trace_id, span_id, parent_span_id, exception
    ):
        SERVER_REQUESTS_TOTAL.labels(app=app_name, outcome="error" if exception else "success").inc()


class LoggingInstrumentor(AbstractInstrumentor):
    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger

    async def handle_completed_request(self, context, app_name, instance_id, start_time_utc, duration):
        self._log.info(
            "twine_request_completed",
            extra={
                "app_name": app_name,
                "instance_id": instance_id,
                "service": context.get(keys.RESOURCE_SERVICE_NAME),
                "template": context.get(keys.REQUEST_TEMPLATE_NAME),
                "status_code": context.get(keys.RESPONSE_STATUS_CODE),
                "handled": context.handler_executed,
                "trace_id": context.get(keys.TRACE_ORIGIN),
                "span_id": context.get(keys.TRACE_REQUEST),
                "parent_span_id": context.get(keys.TRACE_PARENT),
                "start_time_utc": start_time_utc,
                "duration_us": duration,
            },
        )

    async def handle_completed_server_request(
        self, app_name, instance_id, start_time_utc, duration, trace_id, span_id, parent_span_id, exception
    ):
        self._log.info(
            "twine_server_request_completed",
            extra={
                "app_name": app_name,
                "instance_id": instance_id,
                "trace_id": trace_id,
                "span_id": span_id,
                "parent_span_id": parent_span_id,
                "start_time_utc": start_time_utc,
                "duration_us": duration,
                "error": str(exception) if exception else None,
            },
        )


def instrumentation_component(instrumentor: AbstractInstrumentor, builder: Any = None) -> Component:
    """Report the whole execution, retries included, to *instrumentor*."""

    async def instrument(context: ExecutionContext, next_: Next) -> Any:
        server_context: Optional[ServerContext] = context.get(keys.SERVER_CONTEXT)
        if server_context is None or not server_context.app_name or not server_context.instance_id:
            raise TwineConfigurationError(
                "[Instrumentation] Could not find application info. Provide a ServerContext "
                "with app_name and instance_id, or set TWINE_INSTRUMENTATION_APP_NAME "
                "and TWINE_INSTRUMENTATION_INSTANCE_ID.",
                context,
                builder,
            )

        start_time_utc = int(time.time() * 1000)
        started = time.perf_counter()
        try:
            return await next_()
        finally:
            duration = int((time.perf_counter() - started) * 1e6)
            await instrumentor.handle_completed_request(
                context, server_context.app_name, server_context.instance_id, start_time_utc, duration
            )

    return instrument
