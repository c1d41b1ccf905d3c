import asyncio

import pytest

from conftest import FakeClock
from snaptrans.translation.rate_limit import SlidingWindowRateLimiter


def test_fourth_request_waits_within_window():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=3, window_s=1.0, clock=clock, sleep=clock.sleep)

    async def scenario():
        waits = []
        for _ in range(3):
            waits.append(await limiter.acquire())
            clock.now += 0.05
        waits.append(await limiter.acquire())
        return waits

    waits = asyncio.run(scenario())
    assert waits[:3] == [0.0, 0.0, 0.0]
    assert 0.0 < waits[3] <= 1.0 + 1e-9
    assert clock.sleeps


def test_window_never_exceeds_max_requests():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=5, window_s=2.0, clock=clock, sleep=clock.sleep)
    stamps = []

    async def scenario():
        for _ in range(23):
            await limiter.acquire()
            stamps.append(clock.now)
            clock.now += 0.25

    asyncio.run(scenario())
    for t in stamps:
        in_window = [s for s in stamps if t <= s < t + 2.0]
        assert len(in_window) <= 5


def test_status_and_reset():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=2, window_s=10.0, clock=clock, sleep=clock.sleep)
    asyncio.run(limiter.acquire())
    clock.now = 4.0
    status = limiter.status()
    assert status["remaining"] == 1
    assert status["reset_in"] == pytest.approx(6.0)
    assert limiter.wait_time() == 0.0

    asyncio.run(limiter.acquire())
    assert limiter.wait_time() == pytest.approx(6.0)
    limiter.reset()
    assert limiter.status()["remaining"] == 2
    assert limiter.status()["reset_in"] == 0.0


def test_invalid_limits_rejected():
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(max_requests=0)
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(window_s=0)
