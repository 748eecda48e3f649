"""Value providers: data, a way to fetch data, or the promise of data."""
from __future__ import annotations

import inspect
from typing import Any


async def resolve_provider(provider: Any) -> Any:
    """Resolve a literal, awaitable, callable, or callable returning an awaitable."""
    value = provider() if callable(provider) else provider
    if inspect.isawaitable(value):
        value = await value
    return value
