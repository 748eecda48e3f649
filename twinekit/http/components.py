"""HTTP pipeline components: protocol/transport, host resolution, request shaping.

These are thin glue around the transport collaborator.  The only fault logic
lives in :func:`transport_component`: a 5xx status or a transport exception
marks the context remotely faulted, anything else clears the fault.
"""
from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, Callable, Mapping, Optional
from urllib.parse import quote, urlencode

from pydantic import BaseModel

from twinekit.http.transport import AbstractTransport, TransportRequest, default_transport
from twinekit.observability.metrics import DOWNSTREAM_ERRORS_TOTAL, DOWNSTREAM_REQUESTS_TOTAL
from twinekit.pipeline import keys
from twinekit.pipeline.builder import Component, Next
from twinekit.pipeline.context import ExecutionContext
from twinekit.pipeline.errors import RemoteFault, TwineConfigurationError, ensure
from twinekit.pipeline.providers import resolve_provider

logger = logging.getLogger(__name__)


# ── Transport ────────────────────────────────────────────────────────────────
def _build_transport_request(context: ExecutionContext) -> TransportRequest:
    host = context.get(keys.HOST) or context.get(keys.RESOURCE_SERVICE_NAME)
    path = context.get(keys.REQUEST_PATH) or ""
    if path:
        # The url is assembled as host + '/' + path
        host = host.rstrip("/")
        path = path.lstrip("/")

    return TransportRequest(
        protocol=context.get(keys.REQUEST_PROTOCOL),
        host=host,
        port=context.get(keys.PORT),
        path=path,
        method=context.get(keys.REQUEST_METHOD),
        headers=context.get(keys.REQUEST_HEADERS) or {},
        body=context.get(keys.REQUEST_BODY),
        timeout=context.get(keys.REQUEST_TIMEOUT) or 0,
    )


async def perform_request(context: ExecutionContext, transport: AbstractTransport) -> None:
    if context.get(keys.REQUEST_CONTENT) is not None and context.get(keys.REQUEST_BODY) is None:
        raise TwineConfigurationError(
            "media.RequestContent was set, but no request media handler was specified", context
        )

    request = _build_transport_request(context)
    service = context.get(keys.RESOURCE_SERVICE_NAME, "unknown")
    DOWNSTREAM_REQUESTS_TOTAL.labels(
        service=service, protocol=request.protocol or "", method=request.method or ""
    ).inc()

    try:
        response = await transport.send(request, context)
        context[keys.RESPONSE_HEADERS] = response.headers
        context[keys.RESPONSE_STATUS_CODE] = response.status_code
        context[keys.RESPONSE_REASON_PHRASE] = response.status_text

        if response.status_code >= 500:
            context.set_fault(RemoteFault(
                f"Remote host returned a {response.status_code} status from "
                f"{request.method} to {request.url}",
                context,
            ))
            DOWNSTREAM_ERRORS_TOTAL.labels(service=service, error_type=str(response.status_code)).inc()
        else:
            context.clear_fault()

        context[keys.RESPONSE_BODY] = await response.get_content()
    except Exception as exc:
        logger.warning(
            "transport_failed",
            extra={"service": service, "url": request.url, "error": repr(exc)},
        )
        DOWNSTREAM_ERRORS_TOTAL.labels(service=service, error_type=type(exc).__name__).inc()
        context[keys.RESPONSE_BODY] = None
        context[keys.RESPONSE_HEADERS] = {}
        context[keys.RESPONSE_STATUS_CODE] = 0
        context[keys.RESPONSE_REASON_PHRASE] = "The HTTP transport failed"
        fault = RemoteFault(f"The HTTP transport failed: {exc!r}", context)
        fault.__cause__ = exc
        context.set_fault(fault)


def transport_component(protocol: str, transport: Optional[AbstractTransport] = None) -> Component:
    async def send(context: ExecutionContext, next_: Next) -> Any:
        context[keys.REQUEST_PROTOCOL] = protocol
        await perform_request(context, transport or default_transport())
        return await next_()

    return send


# ── Host resolution ──────────────────────────────────────────────────────────
def service_resolver_component(resolver: Any) -> Component:
    """Resolve the service name to a host.

    *resolver* is a host string, a mapping keyed by service name, a callable
    taking the service name, or an awaitable of any of these.
    """
    if resolver is None:
        raise TwineConfigurationError("using_service_resolver does not accept a None resolver.")

    async def resolve(context: ExecutionContext, next_: Next) -> Any:
        service_name = context.get(keys.RESOURCE_SERVICE_NAME)
        value = resolver(service_name) if callable(resolver) else resolver
        value = await resolve_provider(value)

        host = value if isinstance(value, str) else (value or {}).get(service_name)
        if not host:
            raise TwineConfigurationError(f"Failed to resolve host from service name: {service_name}", context)

        context[keys.HOST] = host
        return await next_()

    return resolve


# ── Headers and auth ─────────────────────────────────────────────────────────
def header_component(
    name: str,
    provider: Any,
    transform: Callable[[Any], Any] = lambda value: value,
    builder: Any = None,
) -> Component:
    ensure(name, "Header name is None or empty.", None, builder)
    ensure(provider is not None and provider != "", "Header value provider is None or empty.", None, builder)

    async def add_header(context: ExecutionContext, next_: Next) -> Any:
        value = await resolve_provider(provider)
        context.request_headers()[name] = transform(value)
        return await next_()

    return add_header


def bearer_token_component(provider: Any, builder: Any = None) -> Component:
    return header_component("Authorization", provider, lambda token: f"Bearer {token}", builder)


def basic_auth_component(username_provider: Any, password_provider: Any) -> Component:
    async def add_basic_auth(context: ExecutionContext, next_: Next) -> Any:
        username = await resolve_provider(username_provider)
        password = await resolve_provider(password_provider)
        token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        context.request_headers()["Authorization"] = f"Basic {token}"
        return await next_()

    return add_basic_auth


# ── Bodies ───────────────────────────────────────────────────────────────────
def _jsonable(content: Any) -> Any:
    if isinstance(content, BaseModel):
        return content.model_dump(mode="json")
    return content


def json_body_component() -> Component:
    async def sends_json(context: ExecutionContext, next_: Next) -> Any:
        context.request_headers()["Content-Type"] = "application/json"
        content = context.get(keys.REQUEST_CONTENT)
        if content is not None:
            context[keys.REQUEST_BODY] = json.dumps(_jsonable(content))
        return await next_()

    return sends_json


def accept_json_component() -> Component:
    async def receives_json(context: ExecutionContext, next_: Next) -> Any:
        context.request_headers()["Accept"] = "application/json"
        return await next_()

    return receives_json


def form_body_component() -> Component:
    async def sends_form_data(context: ExecutionContext, next_: Next) -> Any:
        context.request_headers()["Content-Type"] = "application/x-www-form-urlencoded"
        content = context.get(keys.REQUEST_CONTENT)
        if content is not None:
            context[keys.REQUEST_BODY] = urlencode(_jsonable(content))
        return await next_()

    return sends_form_data


def raw_body_component(content_type: Optional[str] = None) -> Component:
    async def sends_raw(context: ExecutionContext, next_: Next) -> Any:
        if content_type:
            context.request_headers()["Content-Type"] = content_type
        context[keys.REQUEST_BODY] = context.get(keys.REQUEST_CONTENT)
        return await next_()

    return sends_raw


# ── URI templates ────────────────────────────────────────────────────────────
def expand_uri_template(template: str, parameters: Mapping[str, Any], strip_nil_values: bool = True) -> str:
    """Replace ``{name}`` tokens; leftover parameters become the query string."""
    path = template
    remaining = dict(parameters or {})
    for key in list(remaining):
        pattern = re.compile(r"\{" + re.escape(str(key)) + r"\}", re.IGNORECASE)
        replaced = pattern.sub(lambda _match: quote(str(remaining[key]), safe=""), path)
        if replaced != path:
            path = replaced
            del remaining[key]

    query = [
        (key, value)
        for key, value in remaining.items()
        if not (strip_nil_values and value is None)
    ]
    if not query:
        return path
    separator = "&" if "?" in path else "?"
    return path + separator + urlencode([(k, "null" if v is None else v) for k, v in query])


def uri_template_component(template_provider: Any, builder: Any = None) -> Component:
    ensure(template_provider, "The template provider passed to with_uri_template was None or empty.", None, builder)

    async def build_path(context: ExecutionContext, next_: Next) -> Any:
        template = await resolve_provider(template_provider)
        context[keys.REQUEST_PATH] = expand_uri_template(
            template,
            context.get(keys.REQUEST_PARAMETERS) or {},
            context.get(keys.REQUEST_PARAMETERS_STRIP_NIL, True),
        )
        return await next_()

    return build_path
