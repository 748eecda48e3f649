"""SDK-wrapped calls as a transport.

``ResourceService.using_sdk`` replaces the HTTP transport with a call to the
function a Request supplies through ``wrap_sdk_call``.  The call's result
claims the response; an exception from it is a remote fault, so retry,
timeout and load balancing policies apply to SDK calls exactly as to HTTP.
"""
from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

from twinekit.observability.metrics import DOWNSTREAM_ERRORS_TOTAL, DOWNSTREAM_REQUESTS_TOTAL
from twinekit.pipeline import keys
from twinekit.pipeline.builder import Component, Next
from twinekit.pipeline.context import ExecutionContext
from twinekit.pipeline.errors import RemoteFault, TwineConfigurationError
from twinekit.pipeline.providers import resolve_provider

logger = logging.getLogger(__name__)

SdkCall = Callable[[ExecutionContext, Any], Any]


def sdk_component(connection_factory: Any = None) -> Component:
    async def call_sdk(context: ExecutionContext, next_: Next) -> Any:
        service = context.get(keys.RESOURCE_SERVICE_NAME, "unknown")
        sdk_call = context.get(keys.SDK_CALL)
        if sdk_call is None:
            raise TwineConfigurationError(f'SDK call function was not provided for service "{service}"', context)

        DOWNSTREAM_REQUESTS_TOTAL.labels(service=service, protocol="sdk", method="call").inc()
        try:
            connection = await resolve_provider(connection_factory)
            result = sdk_call(context, connection)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            logger.warning("sdk_call_failed", extra={"service": service, "error": repr(exc)})
            DOWNSTREAM_ERRORS_TOTAL.labels(service=service, error_type=type(exc).__name__).inc()
            fault = RemoteFault(f"SDK call failed: {exc!r}", context)
            fault.__cause__ = exc
            context.set_fault(fault)
        else:
            context.clear_fault()
            context.claim(result)
        return await next_()

    return call_sdk


def wrap_sdk_call_component(sdk_call: SdkCall) -> Component:
    if not callable(sdk_call):
        raise TwineConfigurationError("wrap_sdk_call expects a callable")

    async def set_call(context: ExecutionContext, next_: Next) -> Any:
        context[keys.SDK_CALL] = sdk_call
        return await next_()

    return set_call
