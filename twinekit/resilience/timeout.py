"""Timeout policy: race the downstream sub-pipeline against a deadline.

Whichever settles first decides the outcome.  When the deadline wins, a
TimeoutFault is recorded as the context's fault and raised.  The losing
downstream task is cancelled by default so the transport releases its
connection; with ``cancel_on_timeout=False`` it is left to finish in the
background and its result is discarded, although it keeps writing into the
shared context.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from twinekit.observability.metrics import TIMEOUTS_TOTAL
from twinekit.pipeline import keys
from twinekit.pipeline.builder import Component, Next
from twinekit.pipeline.context import ExecutionContext
from twinekit.pipeline.errors import TimeoutFault, TwineConfigurationError

logger = logging.getLogger(__name__)


def _discard_result(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug("abandoned_attempt_failed", extra={"error": repr(task.exception())})


def timeout_component(timeout_ms: Optional[float], cancel_on_timeout: bool = True) -> Component:
    if timeout_ms is not None and (isinstance(timeout_ms, bool) or timeout_ms < 0):
        raise TwineConfigurationError("timeout must be a non-negative number of milliseconds")

    async def race(context: ExecutionContext, next_: Next) -> Any:
        if not timeout_ms:
            return await next_()

        task = asyncio.ensure_future(next_())
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done:
            return task.result()

        if cancel_on_timeout:
            task.cancel()
        else:
            task.add_done_callback(_discard_result)

        fault = TimeoutFault(timeout_ms, context)
        context.set_fault(fault)
        TIMEOUTS_TOTAL.labels(
            service=context.get(keys.RESOURCE_SERVICE_NAME, "unknown"),
            template=context.get(keys.REQUEST_TEMPLATE_NAME, "unknown"),
        ).inc()
        logger.warning(
            "operation_timed_out",
            extra={
                "service": context.get(keys.RESOURCE_SERVICE_NAME),
                "template": context.get(keys.REQUEST_TEMPLATE_NAME),
                "timeout_ms": timeout_ms,
                "cancelled": cancel_on_timeout,
            },
        )
        raise fault

    return race
