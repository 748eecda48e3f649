"""Retry policy: re-run the downstream sub-pipeline until it is handled.

Design decisions:
- The decision runs only after the downstream chain fully settles, against a
  snapshot of the context, never concurrently with an attempt
- A handled response (``twine.HandlerExecuted``) is never retried, even when
  the retry predicate would match
- User callbacks (predicate, escalation, fallback) that raise are wrapped in
  TransformError and propagate immediately; a bug in user code must not loop
- Delays are milliseconds; the escalation function sees the previous delay
  (the base delay on the first retry) and a 1-based attempt number
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Collection, Optional, Sequence, Union

from twinekit.observability.metrics import RETRY_ATTEMPTS, RETRY_FALLBACKS
from twinekit.pipeline import keys
from twinekit.pipeline.builder import Component, Next
from twinekit.pipeline.context import ExecutionContext
from twinekit.pipeline.errors import TransformError, TwineConfigurationError

logger = logging.getLogger(__name__)

RetryPredicate = Callable[[dict], Any]
EscalationStrategy = Callable[[float, float, dict, int, int], float]
FallbackStrategy = Callable[[dict], Any]


class RetryWhen:
    """Helpers for building ``retry_when`` predicates over an environment snapshot."""

    @staticmethod
    def on_remote_faulted(environment: dict) -> bool:
        """Default: timeouts, transport failures and 5xx statuses."""
        return bool(environment.get(keys.IS_REMOTE_FAULTED))

    @staticmethod
    def on_http_status(
        status_codes: Union[int, Collection[int], Callable[[int], bool]],
    ) -> RetryPredicate:
        if isinstance(status_codes, int):
            status_codes = {status_codes}
        if callable(status_codes):
            matches = status_codes
        else:
            matches = frozenset(status_codes).__contains__

        def predicate(environment: dict) -> bool:
            return bool(matches(environment.get(keys.RESPONSE_STATUS_CODE)))

        return predicate

    @staticmethod
    def always(environment: dict) -> bool:
        return True


class EscalateWith:
    """Common backoff escalation strategies."""

    @staticmethod
    def exponential_jitter(
        previous_delay: float,
        base_delay: float,
        environment: dict,
        attempt: int,
        max_attempts: int,
    ) -> int:
        max_delay = (2 ** max_attempts) * base_delay * 2
        computed_max = min(max_delay, (2 ** attempt) * base_delay)
        return random.randint(int(base_delay), int(max(computed_max, base_delay)))


def _any_of(predicates: Sequence[RetryPredicate]) -> RetryPredicate:
    def predicate(environment: dict) -> bool:
        return any(check(environment) for check in predicates)

    return predicate


def _is_non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


@dataclass(frozen=True)
class RetryPolicy:
    """How a template re-executes the components it wraps.

    Args:
        max_auto_retries: retries after the first attempt (2 = 3 requests total)
        delay_retry_for_milliseconds: base delay between attempts
        retry_when: predicate or sequence of predicates (any match retries)
        escalate_retry_delay_with: ``(previous, base, env, attempt, max) -> delay``
        fallback_to: ``(env) -> content`` used once retries are exhausted
    """

    max_auto_retries: int = 0
    delay_retry_for_milliseconds: int = 0
    retry_when: Union[RetryPredicate, Sequence[RetryPredicate]] = RetryWhen.on_remote_faulted
    escalate_retry_delay_with: Optional[EscalationStrategy] = None
    fallback_to: Optional[FallbackStrategy] = None

    def __post_init__(self) -> None:
        if not _is_non_negative_int(self.max_auto_retries):
            raise TwineConfigurationError("max_auto_retries must be a non-negative integer")
        if not _is_non_negative_int(self.delay_retry_for_milliseconds):
            raise TwineConfigurationError("delay_retry_for_milliseconds must be a non-negative integer")

        deciders = self.retry_when
        if callable(deciders):
            deciders = [deciders]
        deciders = list(deciders)
        if not deciders or not all(callable(decider) for decider in deciders):
            raise TwineConfigurationError("retry_when must be either a function or a sequence of functions")
        object.__setattr__(self, "retry_when", deciders[0] if len(deciders) == 1 else _any_of(deciders))

        if self.escalate_retry_delay_with is not None and not callable(self.escalate_retry_delay_with):
            raise TwineConfigurationError("escalate_retry_delay_with must be a function")
        if self.fallback_to is not None and not callable(self.fallback_to):
            raise TwineConfigurationError("fallback_to must be a function")

    def next_delay(self, previous_delay: Optional[float], environment: dict, attempt: int) -> float:
        base = self.delay_retry_for_milliseconds
        if self.escalate_retry_delay_with is None:
            return base
        previous = base if previous_delay is None else previous_delay
        return self.escalate_retry_delay_with(previous, base, environment, attempt, self.max_auto_retries)


async def _call_user(name: str, callback: Callable[..., Any], context: ExecutionContext, *args: Any) -> Any:
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            result = await result
        return result
    except TransformError:
        raise
    except Exception as exc:
        raise TransformError(f"Retry {name} callback failed: {exc}", context) from exc


def retry_component(policy: RetryPolicy) -> Component:
    if not isinstance(policy, RetryPolicy):
        raise TypeError("provided value for retry_policy is not an instance of RetryPolicy")

    async def retry(context: ExecutionContext, next_: Next) -> Any:
        service = context.get(keys.RESOURCE_SERVICE_NAME, "unknown")
        template = context.get(keys.REQUEST_TEMPLATE_NAME, "unknown")
        attempts = 0
        previous_delay: Optional[float] = None

        while True:
            failure: Optional[Exception] = None
            try:
                await next_()
            except TransformError:
                raise
            except Exception as exc:
                failure = exc

            if context.handler_executed:
                if failure is not None:
                    raise failure
                return None

            snapshot = context.snapshot()
            if not await _call_user("predicate", policy.retry_when, context, snapshot):
                if failure is not None:
                    raise failure
                return None

            if attempts >= policy.max_auto_retries:
                if policy.fallback_to is None:
                    # The completion check surfaces the fault
                    if failure is not None:
                        raise failure
                    return None
                content = await _call_user("fallback", policy.fallback_to, context, snapshot)
                RETRY_FALLBACKS.labels(service=service, template=template).inc()
                logger.info(
                    "retry_fallback_used",
                    extra={"service": service, "template": template, "attempts": attempts},
                )
                context.claim(content)
                return None

            attempts += 1
            delay = await _call_user(
                "escalation", policy.next_delay, context, previous_delay, snapshot, attempts
            )
            delay = max(0, delay or 0)
            previous_delay = delay

            RETRY_ATTEMPTS.labels(service=service, template=template).inc()
            logger.info(
                "retrying_request",
                extra={
                    "attempt": attempts,
                    "max_auto_retries": policy.max_auto_retries,
                    "status_code": snapshot.get(keys.RESPONSE_STATUS_CODE),
                    "error": repr(failure or snapshot.get(keys.FAULT_EXCEPTION)),
                    "delay_ms": delay,
                    "service": service,
                    "template": template,
                },
            )
            await asyncio.sleep(delay / 1000)

    return retry
