"""Response dispatch: match a completed attempt to one transform chain.

Handlers are registered in order; each becomes one pipeline component that
lets the rest of the attempt run first, then claims the response when no
earlier handler has claimed it and its predicate matches.  Because the first
registered handler is the innermost, first match wins.

Claiming (seeding ``media.ResponseContent`` with the raw body and setting
``twine.HandlerExecuted``) happens before any transform runs, so a failing
transform leaves the response claimed.
"""
from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence, Union

from twinekit.pipeline import keys
from twinekit.pipeline.builder import Component, Next, PipelineBuilder
from twinekit.pipeline.context import ExecutionContext
from twinekit.pipeline.errors import TransformError, TwineConfigurationError

Transform = Callable[[Any, dict], Any]


# ── Predicates ───────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class StatusCode:
    code: int

    def __call__(self, context: ExecutionContext) -> bool:
        return context.get(keys.RESPONSE_STATUS_CODE) == self.code


@dataclass(frozen=True)
class StatusCodeSet:
    codes: frozenset

    def __call__(self, context: ExecutionContext) -> bool:
        return context.get(keys.RESPONSE_STATUS_CODE) in self.codes


@dataclass(frozen=True)
class ContextPredicate:
    predicate: Callable[[ExecutionContext], Any]

    def __call__(self, context: ExecutionContext) -> bool:
        return bool(self.predicate(context))


Predicate = Union[StatusCode, StatusCodeSet, ContextPredicate]


def normalize_predicate(predicate: Any) -> Predicate:
    """Map ``int | iterable[int] | callable | None`` onto one tagged variant."""
    if isinstance(predicate, (StatusCode, StatusCodeSet, ContextPredicate)):
        return predicate
    if predicate is None:
        return ContextPredicate(lambda context: True)
    if isinstance(predicate, bool):
        raise TwineConfigurationError("handle_when predicate must be a status code, a collection of codes or a callable")
    if isinstance(predicate, int):
        return StatusCode(predicate)
    if callable(predicate):
        return ContextPredicate(predicate)
    if isinstance(predicate, Iterable) and not isinstance(predicate, (str, bytes)):
        codes = frozenset(predicate)
        if not all(isinstance(code, int) for code in codes):
            raise TwineConfigurationError("handle_when status code collections may only contain integers")
        return StatusCodeSet(codes)
    raise TwineConfigurationError(f"Unsupported handle_when predicate: {predicate!r}")


# ── Handler ──────────────────────────────────────────────────────────────────
class ResponseHandler(PipelineBuilder):
    """A predicate plus an ordered chain of ``(content, environment) -> content`` transforms."""

    def __init__(
        self,
        predicate: Any = None,
        transforms: Union[Transform, Sequence[Transform], None] = None,
        template_name: str = "",
    ) -> None:
        super().__init__()
        self.predicate = normalize_predicate(predicate)
        self.template_name = template_name

        if transforms is None:
            transforms = []
        elif callable(transforms):
            transforms = [transforms]
        for index, transform in enumerate(transforms):
            self.add_transform(transform, index)
        if not self._components:
            # No transforms: the raw body is the content
            self.add_component(_claim_response)

    @property
    def identifier(self) -> str:
        return self.template_name

    def add_transform(self, transform: Transform, index: int = 0) -> "ResponseHandler":
        if not callable(transform):
            raise TwineConfigurationError(
                f"Of the transforms provided to handle_when, the one at index {index} is not callable",
                None,
                self,
            )
        if not self._components:
            self.add_component(_claim_response)
        return self.add_component(_transform_component(transform, self))

    def handles(self, context: ExecutionContext) -> bool:
        try:
            return self.predicate(context)
        except TransformError:
            raise
        except Exception as exc:
            raise TransformError(f"Response predicate of handle_when failed: {exc}", context, self) from exc


async def _claim_response(context: ExecutionContext, next_: Next) -> Any:
    context.claim(context.get(keys.RESPONSE_BODY))
    return await next_()


def _transform_component(transform: Transform, handler: ResponseHandler) -> Component:
    name = getattr(transform, "__qualname__", None) or repr(transform)

    async def apply(context: ExecutionContext, next_: Next) -> Any:
        await next_()
        content = context.get(keys.RESPONSE_CONTENT)
        try:
            result = transform(content, context.snapshot())
            if inspect.isawaitable(result):
                result = await result
        except TransformError:
            raise
        except Exception as exc:
            raise TransformError(f"Response handler {name} failed: {exc}", context, handler) from exc
        context[keys.RESPONSE_CONTENT] = result

    return apply


def handler_component(handler: ResponseHandler) -> Component:
    pipeline = handler.build()

    async def dispatch(context: ExecutionContext, next_: Next) -> Any:
        await next_()
        if not context.handler_executed and handler.handles(context):
            await pipeline.invoke(context)

    return dispatch
