"""Error types raised by twine pipelines.

Hierarchy:
- TwineError          – base; message is prefixed with the ``[service :: template]`` path
  - RemoteFault       – transport failure or 5xx; recoverable by a retry policy
    - TimeoutFault    – a timeout policy deadline was breached
  - UnhandledStatus   – no handler claimed the response and nothing faulted
  - TransformError    – a user callback (handler, escalation, fallback) raised
  - NoNodesAvailable  – the cluster resolved to zero nodes
  - TwineConfigurationError – a builder was misconfigured
"""
from __future__ import annotations

from typing import Any, Optional

from twinekit.pipeline import keys


def _environment_of(context: Any) -> Optional[dict]:
    """Accepts an ExecutionContext, a raw environment dict, or None."""
    if context is None:
        return None
    return getattr(context, "environment", context)


def identify(context: Any = None, builder: Any = None) -> str:
    """Return the ``service :: template`` path for *context* or *builder*."""
    environment = _environment_of(context)

    instance = builder
    if instance is None and environment:
        instance = environment.get(keys.REQUEST_INSTANCE)
    if instance is not None:
        identifier = getattr(instance, "identifier", None)
        if identifier:
            return identifier

    if environment:
        service_name = environment.get(keys.RESOURCE_SERVICE_NAME)
        template_name = environment.get(keys.REQUEST_TEMPLATE_NAME)
        if service_name and template_name:
            return f"{service_name} :: {template_name}"
    return ""


class TwineError(Exception):
    """Base error carrying the identity of the request it came from."""

    def __init__(self, message: str, context: Any = None, builder: Any = None) -> None:
        self.raw_message = message
        self.identifier = identify(context, builder)
        environment = _environment_of(context) or {}
        self.status_code: Optional[int] = environment.get(keys.RESPONSE_STATUS_CODE)
        self.fault: Optional[BaseException] = None
        super().__init__(self._render())

    def _render(self) -> str:
        return f"[{self.identifier}] {self.raw_message}" if self.identifier else self.raw_message

    def enrich(self, context: Any) -> "TwineError":
        """Fill in identity, status code and fault from the final context."""
        environment = _environment_of(context) or {}
        if not self.identifier:
            self.identifier = identify(context)
        if self.status_code is None:
            self.status_code = environment.get(keys.RESPONSE_STATUS_CODE)
        if self.fault is None:
            fault = environment.get(keys.FAULT_EXCEPTION)
            if fault is not self:
                self.fault = fault
        self.args = (self._render(),)
        return self


class RemoteFault(TwineError):
    """The remote side or the transport failed."""


class TimeoutFault(RemoteFault):
    def __init__(self, timeout_ms: Any, context: Any = None, builder: Any = None) -> None:
        self.timeout_ms = timeout_ms
        if isinstance(timeout_ms, (int, float)):
            message = f"Twine timeout of {timeout_ms}ms reached"
        else:
            message = str(timeout_ms)
        super().__init__(message, context, builder)


class UnhandledStatus(TwineError):
    """No registered handler matched the response."""


class TransformError(TwineError):
    """A user supplied callback raised; never retried."""


class NoNodesAvailable(TwineError):
    pass


class TwineConfigurationError(TwineError):
    pass


def ensure(condition: Any, message: str, context: Any = None, builder: Any = None) -> None:
    """Raise TwineConfigurationError when *condition* is falsy."""
    if not condition:
        raise TwineConfigurationError(message, context, builder)
