"""Flow trace propagation component.

Runs on every attempt.  The first attempt of a logical request adopts an
explicit trace (``Request.add_trace_context``), else the server context's
inbound trace, else starts a new trace.  Later attempts keep origin and parent
and only regenerate the request (span) id, so no two attempts share a span.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from twinekit.pipeline import keys
from twinekit.pipeline.builder import Next
from twinekit.pipeline.context import ExecutionContext
from twinekit.tracing.context import (
    ServerContext,
    TraceContext,
    generate_trace_id,
)

logger = logging.getLogger(__name__)


def current_trace(context: ExecutionContext) -> Optional[TraceContext]:
    origin_id = context.get(keys.TRACE_ORIGIN)
    if not origin_id:
        return None
    return TraceContext(
        origin_id=origin_id,
        parent_id=context.get(keys.TRACE_PARENT),
        request_id=context.get(keys.TRACE_REQUEST),
    )


def inbound_trace(context: ExecutionContext) -> Optional[TraceContext]:
    explicit = context.get(keys.TRACE_INBOUND)
    if explicit is not None:
        return explicit
    server_context: Optional[ServerContext] = context.get(keys.SERVER_CONTEXT)
    if server_context is not None:
        return server_context.trace
    return None


def apply_trace(context: ExecutionContext, trace: TraceContext) -> None:
    """Write the triple into the environment and mirror it onto the B3 headers."""
    context[keys.TRACE_ORIGIN] = trace.origin_id
    context[keys.TRACE_PARENT] = trace.parent_id
    context[keys.TRACE_REQUEST] = trace.request_id

    context.request_headers().update(trace.to_headers())


async def ensure_trace_context(context: ExecutionContext, next_: Next) -> Any:
    existing = current_trace(context)
    if existing is not None:
        trace = existing.continue_with(generate_trace_id())
    else:
        inbound = inbound_trace(context)
        if inbound is not None:
            logger.debug("flowtrace_continued", extra={"trace_id": inbound.origin_id})
            trace = inbound.continue_with()
        else:
            trace = TraceContext.begin()
            logger.debug("flowtrace_started", extra={"trace_id": trace.origin_id})

    apply_trace(context, trace)
    return await next_()
