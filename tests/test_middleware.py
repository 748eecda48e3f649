"""Server boundary middleware: inbound trace adoption and server request reporting."""
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from tests.conftest import RecordingInstrumentor
from twinekit.config import TwineSettings
from twinekit.observability.metrics import metrics_app
from twinekit.observability.middleware import ServerContextMiddleware

ORIGIN = "0123456789abcdef"
CALLER_SPAN = "fedcba9876543210"


def build_app(instrumentor=None):
    app = FastAPI()
    app.add_middleware(
        ServerContextMiddleware,
        app_name="orders",
        instance_id="orders-1",
        instrumentor=instrumentor,
        settings=TwineSettings(),
    )

    @app.get("/context")
    async def context(request: Request):
        server_context = request.state.twine_context
        return {
            "app_name": server_context.app_name,
            "instance_id": server_context.instance_id,
            "origin_id": server_context.trace.origin_id,
            "parent_id": server_context.trace.parent_id,
            "parent_span_id": server_context.parent_span_id,
        }

    @app.get("/fail")
    async def fail():
        raise RuntimeError("handler failed")

    return app


def test_inbound_b3_headers_become_the_server_trace():
    client = TestClient(build_app())
    response = client.get(
        "/context",
        headers={"X-B3-TraceId": ORIGIN, "X-B3-SpanId": CALLER_SPAN, "X-B3-ParentSpanId": "1111111111111111"},
    )

    assert response.status_code == 200
    assert response.json() == {
        "app_name": "orders",
        "instance_id": "orders-1",
        "origin_id": ORIGIN,
        "parent_id": CALLER_SPAN,
        "parent_span_id": "1111111111111111",
    }


def test_missing_headers_begin_a_new_trace():
    body = TestClient(build_app()).get("/context").json()

    assert len(body["origin_id"]) == 16
    assert body["origin_id"] == body["parent_id"]


def test_instrumentor_receives_completed_server_requests():
    instrumentor = RecordingInstrumentor()
    client = TestClient(build_app(instrumentor))
    client.get("/context", headers={"X-B3-TraceId": ORIGIN, "X-B3-SpanId": CALLER_SPAN})

    assert len(instrumentor.server_requests) == 1
    record = instrumentor.server_requests[0]
    assert record["app_name"] == "orders"
    assert record["trace_id"] == ORIGIN
    assert record["span_id"] == CALLER_SPAN
    assert record["exception"] is None


def test_instrumentor_sees_handler_exceptions():
    instrumentor = RecordingInstrumentor()
    client = TestClient(build_app(instrumentor), raise_server_exceptions=False)

    response = client.get("/fail")

    assert response.status_code == 500
    assert isinstance(instrumentor.server_requests[0]["exception"], RuntimeError)


def test_metrics_app_exposes_twine_metrics():
    app = build_app()
    app.mount("/metrics", metrics_app)

    response = TestClient(app).get("/metrics/")

    assert response.status_code == 200
    assert "twine_downstream_requests_total" in response.text


def test_malformed_b3_headers_begin_a_new_trace():
    instrumentor = RecordingInstrumentor()
    client = TestClient(build_app(instrumentor))

    response = client.get("/context", headers={"X-B3-TraceId": "abc", "X-B3-SpanId": "not-hex!"})

    assert response.status_code == 200
    body = response.json()
    assert len(body["origin_id"]) == 16
    assert body["origin_id"] == body["parent_id"]
    assert len(instrumentor.server_requests) == 1
