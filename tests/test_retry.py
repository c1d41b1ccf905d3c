import asyncio

import pytest

from conftest import FakeSleep
from snaptrans.errors import TranslationQuotaError, TranslationServiceUnavailable
from snaptrans.models import ApiResponse
from snaptrans.translation.retry import RetryPolicy, with_retry


def test_backoff_delays_non_decreasing_and_capped():
    policy = RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=30.0, jitter=0.2)
    for rng_value in (0.0, 0.5, 1.0):
        delays = [policy.delay_for(attempt, rng=lambda: rng_value) for attempt in range(3)]
        assert delays == sorted(delays)
        assert all(d <= policy.max_delay for d in delays)
    # worst case jitter on both sides
    assert policy.delay_for(0, rng=lambda: 1.0) <= policy.delay_for(1, rng=lambda: 0.0)


def test_backoff_jitter_bounds_and_cap():
    policy = RetryPolicy()
    assert policy.delay_for(0, rng=lambda: 0.5) == pytest.approx(1.0)
    assert policy.delay_for(1, rng=lambda: 1.0) == pytest.approx(2.4)
    assert policy.delay_for(2, rng=lambda: 0.0) == pytest.approx(3.2)
    assert policy.delay_for(10, rng=lambda: 1.0) == 30.0


def _scripted(responses):
    calls = []

    async def operation():
        calls.append(1)
        return responses[min(len(calls), len(responses)) - 1]

    return operation, calls


def test_with_retry_recovers_from_retryable_error():
    operation, calls = _scripted([
        ApiResponse.fail(TranslationServiceUnavailable("busy")),
        ApiResponse.fail(TranslationServiceUnavailable("busy")),
        ApiResponse.ok("done"),
    ])
    sleep = FakeSleep()
    response = asyncio.run(with_retry(operation, RetryPolicy(), sleep=sleep, rng=lambda: 0.5))
    assert response.success and response.data == "done"
    assert response.retry_count == 2
    assert len(calls) == 3
    assert sleep.calls == [pytest.approx(1.0), pytest.approx(2.0)]


def test_with_retry_stops_on_non_retryable_error():
    operation, calls = _scripted([ApiResponse.fail(TranslationQuotaError("quota"))])
    sleep = FakeSleep()
    response = asyncio.run(with_retry(operation, RetryPolicy(), sleep=sleep))
    assert not response.success
    assert response.retry_count == 0
    assert len(calls) == 1
    assert sleep.calls == []


def test_with_retry_gives_up_after_max_retries():
    operation, calls = _scripted([ApiResponse.fail(TranslationServiceUnavailable("busy"))])
    sleep = FakeSleep()
    response = asyncio.run(with_retry(operation, RetryPolicy(max_retries=2), sleep=sleep))
    assert not response.success
    assert response.retry_count == 2
    assert len(calls) == 3
    assert len(sleep.calls) == 2
