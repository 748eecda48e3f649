"""Per-execution key/value environment threaded through every component."""
from __future__ import annotations

from typing import Any, Optional

from twinekit.pipeline import keys


class ExecutionContext:
    """Mutable environment owned by exactly one Request execution.

    The fault flag and the fault value always change together; use
    :meth:`set_fault` / :meth:`clear_fault` instead of writing the keys.
    """

    __slots__ = ("environment",)

    def __init__(self, environment: Optional[dict[str, Any]] = None) -> None:
        self.environment: dict[str, Any] = dict(environment or {})

    def __getitem__(self, key: str) -> Any:
        return self.environment[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.environment[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self.environment

    def get(self, key: str, default: Any = None) -> Any:
        return self.environment.get(key, default)

    def snapshot(self) -> dict[str, Any]:
        """Shallow copy handed to user callbacks so they cannot mutate the pipeline."""
        return dict(self.environment)

    # ── Fault state ──────────────────────────────────────────────────────────
    @property
    def is_remote_faulted(self) -> bool:
        return bool(self.environment.get(keys.IS_REMOTE_FAULTED))

    @property
    def fault(self) -> Optional[BaseException]:
        return self.environment.get(keys.FAULT_EXCEPTION)

    def set_fault(self, fault: BaseException) -> None:
        self.environment[keys.IS_REMOTE_FAULTED] = True
        self.environment[keys.FAULT_EXCEPTION] = fault

    def clear_fault(self) -> None:
        self.environment[keys.IS_REMOTE_FAULTED] = False
        self.environment[keys.FAULT_EXCEPTION] = None

    # ── Response claim ───────────────────────────────────────────────────────
    @property
    def handler_executed(self) -> bool:
        return bool(self.environment.get(keys.HANDLER_EXECUTED))

    def claim(self, content: Any) -> None:
        self.environment[keys.RESPONSE_CONTENT] = content
        self.environment[keys.HANDLER_EXECUTED] = True

    def request_headers(self) -> dict[str, Any]:
        """Return the outbound header mapping, creating it when missing."""
        headers = self.environment.get(keys.REQUEST_HEADERS)
        if headers is None:
            headers = {}
            self.environment[keys.REQUEST_HEADERS] = headers
        return headers

    def __repr__(self) -> str:
        return f"ExecutionContext({sorted(self.environment)!r})"
