"""Pipeline composition and execution.

A *component* is a callable ``(context, next_) -> awaitable``.  ``next_`` is a
zero-argument callable returning an awaitable for the rest of the chain.  A
component may act before awaiting ``next_``, after it, on its failure, or skip
it entirely.

Building ``[c0, c1, ..., cn]`` and invoking it starts at ``cn``: the most
recently added component is the outermost layer and its continuation runs the
components added before it.  Every failure, including one raised while a
component is being entered, surfaces as an exception from the awaited
``Pipeline.invoke`` rather than from ``build``.
"""
from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Sequence

from twinekit.pipeline.context import ExecutionContext

Next = Callable[[], Awaitable[Any]]
Component = Callable[[ExecutionContext, Next], Any]


class _Chain:
    """Explicit cursor over a frozen component tuple for one invocation."""

    __slots__ = ("_components", "_context")

    def __init__(self, components: Sequence[Component], context: ExecutionContext) -> None:
        self._components = components
        self._context = context

    def continuation(self, index: int) -> Next:
        def next_() -> Awaitable[Any]:
            return self.run(index)

        return next_

    async def run(self, index: int) -> Any:
        if index < 0:
            return None
        result = self._components[index](self._context, self.continuation(index - 1))
        if inspect.isawaitable(result):
            result = await result
        return result


class Pipeline:
    """Immutable, compiled sequence of components."""

    __slots__ = ("_components",)

    def __init__(self, components: Sequence[Component]) -> None:
        self._components = tuple(components)

    def __len__(self) -> int:
        return len(self._components)

    async def invoke(self, context: ExecutionContext) -> Any:
        chain = _Chain(self._components, context)
        return await chain.run(len(self._components) - 1)

    __call__ = invoke

    def as_component(self) -> Component:
        """Expose this pipeline as one component of an enclosing pipeline."""

        async def nested(context: ExecutionContext, next_: Next) -> Any:
            await self.invoke(context)
            return await next_()

        return nested


class PipelineBuilder:
    """Accumulates components; ``build`` compiles a snapshot of them."""

    def __init__(self) -> None:
        self._components: list[Component] = []

    @property
    def identifier(self) -> str:
        return ""

    def add_component(self, component: Component):
        if not callable(component):
            raise TypeError(f"pipeline component must be callable, got {type(component).__name__}")
        self._components.append(component)
        return self

    def add_context_value(self, key: str, value: Any):
        async def set_value(context: ExecutionContext, next_: Next) -> Any:
            context[key] = value
            return await next_()

        return self.add_component(set_value)

    def add_pipeline(self, pipeline: Pipeline):
        return self.add_component(pipeline.as_component())

    def build(self) -> Pipeline:
        return Pipeline(self._components)
