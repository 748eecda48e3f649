"""Retry policy: attempt counting, escalation, fallback, non-retryable failures."""
import time

import pytest

from twinekit.pipeline import ExecutionContext, PipelineBuilder, RemoteFault, TransformError, TwineConfigurationError
from twinekit.pipeline import keys
from twinekit.resilience.retry import EscalateWith, RetryPolicy, RetryWhen, retry_component

pytestmark = pytest.mark.asyncio


class Downstream:
    """Faults for the first ``failures`` attempts, then succeeds and claims."""

    def __init__(self, failures=10**6, status=500, raise_fault=False):
        self.failures = failures
        self.status = status
        self.raise_fault = raise_fault
        self.attempts = 0

    async def __call__(self, context, next_):
        self.attempts += 1
        if self.attempts <= self.failures:
            context[keys.RESPONSE_STATUS_CODE] = self.status
            fault = RemoteFault(f"attempt {self.attempts} failed", context)
            context.set_fault(fault)
            if self.raise_fault:
                raise fault
        else:
            context[keys.RESPONSE_STATUS_CODE] = 200
            context.clear_fault()
            context.claim("ok")
        return await next_()


async def run(policy, downstream):
    context = ExecutionContext()
    pipeline = PipelineBuilder().add_component(downstream).add_component(retry_component(policy)).build()
    await pipeline.invoke(context)
    return context


@pytest.mark.parametrize("max_retries", [0, 1, 3])
async def test_persistent_fault_runs_downstream_n_plus_one_times(max_retries):
    downstream = Downstream()
    context = await run(RetryPolicy(max_auto_retries=max_retries), downstream)

    assert downstream.attempts == max_retries + 1
    assert context.is_remote_faulted
    assert not context.handler_executed


async def test_success_stops_retrying():
    downstream = Downstream(failures=1)
    context = await run(RetryPolicy(max_auto_retries=5), downstream)

    assert downstream.attempts == 2
    assert context[keys.RESPONSE_CONTENT] == "ok"


async def test_raised_fault_is_retried_then_reraised():
    downstream = Downstream(raise_fault=True)

    with pytest.raises(RemoteFault, match="attempt 3 failed"):
        await run(RetryPolicy(max_auto_retries=2), downstream)
    assert downstream.attempts == 3


async def test_claimed_response_is_never_retried():
    async def claimed_but_faulted(context, next_):
        claimed_but_faulted.calls += 1
        context.set_fault(RemoteFault("5xx handled by a handler"))
        context.claim("handled")
        return await next_()

    claimed_but_faulted.calls = 0
    await run(RetryPolicy(max_auto_retries=3, retry_when=RetryWhen.always), claimed_but_faulted)

    assert claimed_but_faulted.calls == 1


async def test_predicate_false_stops_without_retry():
    downstream = Downstream(status=503)
    await run(RetryPolicy(max_auto_retries=3, retry_when=RetryWhen.on_http_status(502)), downstream)

    assert downstream.attempts == 1


async def test_predicate_sequence_is_logical_or():
    downstream = Downstream(status=503)
    policy = RetryPolicy(
        max_auto_retries=2,
        retry_when=[RetryWhen.on_http_status(502), RetryWhen.on_http_status({503, 504})],
    )
    await run(policy, downstream)

    assert downstream.attempts == 3


async def test_escalation_receives_previous_delay_and_attempt_numbers():
    calls = []

    def escalate(previous, base, environment, attempt, max_attempts):
        calls.append((previous, base, attempt, max_attempts))
        return previous + 1

    policy = RetryPolicy(max_auto_retries=3, delay_retry_for_milliseconds=2, escalate_retry_delay_with=escalate)
    await run(policy, Downstream())

    assert calls == [(2, 2, 1, 3), (3, 2, 2, 3), (4, 2, 3, 3)]


async def test_constant_delay_elapses_between_attempts():
    started = time.monotonic()
    await run(RetryPolicy(max_auto_retries=2, delay_retry_for_milliseconds=50), Downstream())

    assert time.monotonic() - started >= 0.09


async def test_fallback_claims_the_response_after_exhaustion():
    seen = {}

    def fallback(environment):
        seen["status"] = environment[keys.RESPONSE_STATUS_CODE]
        return {"cached": True}

    downstream = Downstream()
    context = await run(RetryPolicy(max_auto_retries=1, fallback_to=fallback), downstream)

    assert downstream.attempts == 2
    assert seen == {"status": 500}
    assert context.handler_executed
    assert context[keys.RESPONSE_CONTENT] == {"cached": True}


async def test_fallback_replaces_a_raised_fault():
    downstream = Downstream(raise_fault=True)
    context = await run(RetryPolicy(max_auto_retries=1, fallback_to=lambda env: "fallback"), downstream)

    assert context[keys.RESPONSE_CONTENT] == "fallback"


async def test_transform_error_is_not_retried():
    async def broken(context, next_):
        broken.calls += 1
        raise TransformError("handler bug")

    broken.calls = 0
    with pytest.raises(TransformError):
        await run(RetryPolicy(max_auto_retries=3, retry_when=RetryWhen.always), broken)
    assert broken.calls == 1


async def test_failing_user_callback_becomes_transform_error():
    def bad_predicate(environment):
        raise ValueError("predicate bug")

    downstream = Downstream()
    with pytest.raises(TransformError) as info:
        await run(RetryPolicy(max_auto_retries=3, retry_when=bad_predicate), downstream)

    assert isinstance(info.value.__cause__, ValueError)
    assert downstream.attempts == 1


async def test_exponential_jitter_stays_within_bounds():
    for attempt in range(1, 5):
        delay = EscalateWith.exponential_jitter(10, 10, {}, attempt, 4)
        assert 10 <= delay <= min((2 ** 4) * 10 * 2, (2 ** attempt) * 10)


async def test_policy_validation():
    with pytest.raises(TwineConfigurationError):
        RetryPolicy(max_auto_retries=-1)
    with pytest.raises(TwineConfigurationError):
        RetryPolicy(delay_retry_for_milliseconds=1.5)
    with pytest.raises(TwineConfigurationError):
        RetryPolicy(retry_when=[])
    with pytest.raises(TwineConfigurationError):
        RetryPolicy(fallback_to="nope")
    with pytest.raises(TypeError):
        retry_component({"max_auto_retries": 1})
