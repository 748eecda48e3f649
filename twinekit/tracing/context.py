"""Flow trace identity and the explicit server-side context.

Identifiers are Zipkin compatible: 16 lowercase hex characters.  On the wire
the origin id travels as ``X-B3-TraceId`` and the request (span) id as
``X-B3-SpanId``.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping, Optional

from opentelemetry import trace as otel_trace
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from twinekit.config import TwineSettings

TRACE_ID_HEADER = "X-B3-TraceId"
SPAN_ID_HEADER = "X-B3-SpanId"
PARENT_SPAN_ID_HEADER = "X-B3-ParentSpanId"

logger = logging.getLogger(__name__)

_ID_PATTERN = r"^[0-9a-f]{16}$"


def normalize_trace_id(value: str) -> str:
    """Zipkin can't deal with ids longer than 16 nor with '-'s.

    A 128-bit id keeps its lower 64 bits, as B3 and OpenTelemetry do.
    """
    value = value.replace("-", "").lower()
    if len(value) == 32:
        return value[16:]
    return value[:16]


def generate_trace_id() -> str:
    return normalize_trace_id(uuid.uuid4().hex)


class TraceContext(BaseModel):
    """Flow trace identity of one outbound request or of an inbound one.

    ``request_id`` is optional for inbound traces, where only the origin and
    the caller's span (our parent) are known.
    """

    model_config = ConfigDict(frozen=True)

    origin_id: str = Field(pattern=_ID_PATTERN)
    parent_id: str = Field(pattern=_ID_PATTERN)
    request_id: Optional[str] = Field(default=None, pattern=_ID_PATTERN)

    @field_validator("origin_id", "parent_id", "request_id", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        if isinstance(value, str):
            return normalize_trace_id(value)
        return value

    @classmethod
    def begin(cls) -> "TraceContext":
        origin_id = generate_trace_id()
        return cls(origin_id=origin_id, parent_id=origin_id, request_id=origin_id)

    def continue_with(self, request_id: Optional[str] = None) -> "TraceContext":
        """Keep origin and parent, use a fresh request id."""
        return TraceContext(
            origin_id=self.origin_id,
            parent_id=self.parent_id,
            request_id=request_id or generate_trace_id(),
        )

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> Optional["TraceContext"]:
        """Build the inbound trace from B3 headers.

        None unless both ids are present and well formed.
        """
        normalized = {name.lower(): value for name, value in headers.items()}
        trace_id = normalized.get(TRACE_ID_HEADER.lower())
        span_id = normalized.get(SPAN_ID_HEADER.lower())
        if not trace_id or not span_id:
            return None
        try:
            return cls(origin_id=trace_id, parent_id=span_id)
        except ValidationError:
            logger.warning("malformed_trace_headers", extra={"trace_id": trace_id, "span_id": span_id})
            return None

    def to_headers(self) -> dict[str, str]:
        headers = {TRACE_ID_HEADER: self.origin_id}
        if self.request_id:
            headers[SPAN_ID_HEADER] = self.request_id
        return headers


class ServerContext(BaseModel):
    """Identity of the application serving a request, passed into every Request.

    Replaces process-wide "current app" and "current inbound trace" state.
    """

    model_config = ConfigDict(frozen=True)

    app_name: Optional[str] = None
    instance_id: Optional[str] = None
    trace: Optional[TraceContext] = None
    parent_span_id: Optional[str] = None

    @classmethod
    def from_settings(
        cls,
        settings: Optional[TwineSettings] = None,
        trace: Optional[TraceContext] = None,
    ) -> "ServerContext":
        settings = settings or TwineSettings.from_env()
        return cls(app_name=settings.app_name, instance_id=settings.instance_id, trace=trace)

    @classmethod
    def from_current_span(
        cls,
        app_name: Optional[str] = None,
        instance_id: Optional[str] = None,
    ) -> "ServerContext":
        """Adopt the active OpenTelemetry span as the inbound trace.

        B3 64-bit trace ids are the lower 64 bits of a 128-bit trace id.
        """
        span_context = otel_trace.get_current_span().get_span_context()
        trace = None
        if span_context.is_valid:
            trace = TraceContext(
                origin_id=normalize_trace_id(format(span_context.trace_id, "032x")),
                parent_id=format(span_context.span_id, "016x"),
            )
        return cls(app_name=app_name, instance_id=instance_id, trace=trace)
