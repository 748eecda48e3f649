"""HTTP components, URI templates, the httpx transport, and Receives helpers."""
import json

import httpx
import pytest
from pydantic import BaseModel

from tests.conftest import FakeTransport
from twinekit.config import TwineSettings
from twinekit.http.components import (
    basic_auth_component,
    bearer_token_component,
    expand_uri_template,
    form_body_component,
    json_body_component,
    perform_request,
    service_resolver_component,
)
from twinekit.http.receives import Receives
from twinekit.http.transport import HttpxTransport, TransportRequest
from twinekit.pipeline import (
    ExecutionContext,
    RemoteFault,
    TransformError,
    TwineConfigurationError,
)
from twinekit.pipeline import keys

pytestmark = pytest.mark.asyncio


async def done():
    return None


def http_context(**values):
    environment = {
        keys.RESOURCE_SERVICE_NAME: "Inventory",
        keys.REQUEST_PROTOCOL: "https",
        keys.REQUEST_METHOD: "GET",
    }
    environment.update(values)
    return ExecutionContext(environment)


# ── URI templates ────────────────────────────────────────────────────────────
async def test_uri_template_replaces_tokens_case_insensitively():
    assert expand_uri_template("items/{ID}/parts/{part}", {"id": 7, "part": "a b"}) == "items/7/parts/a%20b"


async def test_leftover_parameters_become_the_query_string():
    assert expand_uri_template("items", {"page": 2, "q": "x"}) == "items?page=2&q=x"
    assert expand_uri_template("items?sort=asc", {"page": 2}) == "items?sort=asc&page=2"


async def test_nil_parameters_are_stripped_unless_disabled():
    assert expand_uri_template("items", {"page": None}) == "items"
    assert expand_uri_template("items", {"page": None}, strip_nil_values=False) == "items?page=null"


# ── Transport component ──────────────────────────────────────────────────────
async def test_perform_request_records_response_and_clears_fault():
    transport = FakeTransport((200, "hello"))
    context = http_context(**{keys.HOST: "inventory.internal/", keys.REQUEST_PATH: "/items/1"})
    context.set_fault(RemoteFault("previous attempt"))

    await perform_request(context, transport)

    assert transport.calls[0].url == "https://inventory.internal/items/1"
    assert context[keys.RESPONSE_STATUS_CODE] == 200
    assert context[keys.RESPONSE_BODY] == "hello"
    assert not context.is_remote_faulted


async def test_server_error_status_sets_remote_fault():
    context = http_context()
    await perform_request(context, FakeTransport((503, "down")))

    assert context.is_remote_faulted
    assert isinstance(context.fault, RemoteFault)
    assert context[keys.RESPONSE_BODY] == "down"


async def test_client_error_status_is_not_a_fault():
    context = http_context()
    await perform_request(context, FakeTransport((404, "")))

    assert not context.is_remote_faulted


async def test_transport_exception_becomes_status_zero_fault():
    error = ConnectionResetError("reset")
    context = http_context()
    await perform_request(context, FakeTransport(error))

    assert context[keys.RESPONSE_STATUS_CODE] == 0
    assert context[keys.RESPONSE_REASON_PHRASE] == "The HTTP transport failed"
    assert context.fault.__cause__ is error


async def test_content_without_encoder_is_a_configuration_error():
    context = http_context(**{keys.REQUEST_CONTENT: {"a": 1}})

    with pytest.raises(TwineConfigurationError, match="no request media handler"):
        await perform_request(context, FakeTransport())


async def test_host_defaults_to_service_name():
    transport = FakeTransport()
    await perform_request(http_context(), transport)

    assert transport.calls[0].host == "Inventory"


# ── Request shaping components ───────────────────────────────────────────────
@pytest.mark.parametrize(
    "resolver",
    ["inventory.internal", {"Inventory": "inventory.internal"}, lambda name: f"{name.lower()}.internal"],
)
async def test_service_resolver_variants(resolver):
    context = http_context()
    await service_resolver_component(resolver)(context, done)

    assert context[keys.HOST] == "inventory.internal"


async def test_service_resolver_without_a_host_fails():
    with pytest.raises(TwineConfigurationError, match="Failed to resolve host"):
        await service_resolver_component({"Other": "x"})(http_context(), done)


class Item(BaseModel):
    sku: str
    quantity: int


async def test_json_body_dumps_pydantic_models():
    context = http_context(**{keys.REQUEST_CONTENT: Item(sku="abc", quantity=2)})
    await json_body_component()(context, done)

    assert json.loads(context[keys.REQUEST_BODY]) == {"sku": "abc", "quantity": 2}
    assert context[keys.REQUEST_HEADERS]["Content-Type"] == "application/json"


async def test_form_body_is_url_encoded():
    context = http_context(**{keys.REQUEST_CONTENT: {"a": "1", "b": "x y"}})
    await form_body_component()(context, done)

    assert context[keys.REQUEST_BODY] == "a=1&b=x+y"


async def test_auth_headers():
    context = http_context()
    await bearer_token_component(lambda: "tok")(context, done)
    assert context[keys.REQUEST_HEADERS]["Authorization"] == "Bearer tok"

    await basic_auth_component("user", "pass")(context, done)
    assert context[keys.REQUEST_HEADERS]["Authorization"] == "Basic dXNlcjpwYXNz"


# ── httpx transport ──────────────────────────────────────────────────────────
async def test_httpx_transport_sends_request_and_reads_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["method"] = request.method
        seen["header"] = request.headers.get("x-b3-traceid")
        seen["body"] = request.content
        return httpx.Response(201, text="created")

    transport = HttpxTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)), TwineSettings())
    request = TransportRequest(
        protocol="https",
        host="inventory.internal",
        port=8443,
        path="items",
        method="POST",
        headers={"X-B3-TraceId": "0123456789abcdef"},
        body='{"a": 1}',
        timeout=1000,
    )

    response = await transport.send(request, ExecutionContext({keys.CONNECT_TIMEOUT: 50}))

    assert response.status_code == 201
    assert response.status_text == "Created"
    assert await response.get_content() == "created"
    assert seen == {
        "url": "https://inventory.internal:8443/items",
        "method": "POST",
        "header": "0123456789abcdef",
        "body": b'{"a": 1}',
    }
    await transport.aclose()


async def test_httpx_transport_errors_surface_as_remote_faults():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    transport = HttpxTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)), TwineSettings())
    context = http_context()
    await perform_request(context, transport)

    assert context[keys.RESPONSE_STATUS_CODE] == 0
    assert isinstance(context.fault.__cause__, httpx.ConnectError)
    await transport.aclose()


# ── Receives ─────────────────────────────────────────────────────────────────
async def test_receives_json_and_wrapped_shapes():
    environment = {keys.RESPONSE_STATUS_CODE: 200}

    assert Receives.json('{"a": 1}', environment) == {"a": 1}
    assert Receives.wrapped_api_item('{"data": {"item": {"id": 1}}}', environment) == {"id": 1}
    assert Receives.wrapped_api_collection('{"Data": {"Items": []}}', environment) == []


async def test_receives_failures_carry_the_status_code():
    environment = {keys.RESPONSE_STATUS_CODE: 200}

    with pytest.raises(TransformError, match="could not be parsed"):
        Receives.json("<html>", environment)
    with pytest.raises(TransformError, match="Status code 200"):
        Receives.wrapped_api_item('{"data": {}}', environment)
    with pytest.raises(TransformError):
        Receives.empty(None)("not empty", environment)


async def test_receives_raw_exposes_response_parts():
    environment = {keys.RESPONSE_STATUS_CODE: 202, keys.RESPONSE_HEADERS: {"a": "b"}, keys.RESPONSE_BODY: "x"}

    assert Receives.raw("x", environment) == {"headers": {"a": "b"}, "status_code": 202, "body": "x"}
