# tests/test_rate_limit.py

import threading

import pytest

from citronus_client.connection.rate_limiter import RateLimiter
from conftest import FakeClock


def test_full_bucket_allows_rate_plus_burst_then_blocks():
    clock = FakeClock()
    limiter = RateLimiter(calls_per_second=5, burst=5, clock=clock, sleep=clock.sleep)

    waits = [limiter.acquire() for _ in range(10)]
    assert waits == [0.0] * 10
    assert not limiter.try_acquire()

    waited = limiter.acquire()
    # One token refills at 5/s.
    assert waited == pytest.approx(0.2)


def test_tokens_refill_up_to_capacity():
    clock = FakeClock()
    limiter = RateLimiter(calls_per_second=5, burst=5, clock=clock, sleep=clock.sleep)
    for _ in range(10):
        assert limiter.try_acquire()

    clock.advance(1.0)
    assert limiter.tokens == pytest.approx(5)

    clock.advance(60)
    assert limiter.tokens == pytest.approx(10)


def test_penalize_drains_bucket_and_holds_callers():
    clock = FakeClock()
    limiter = RateLimiter(calls_per_second=5, burst=5, clock=clock, sleep=clock.sleep)

    limiter.penalize(2.0)

    assert limiter.tokens == 0
    assert not limiter.try_acquire()
    clock.advance(1.0)
    assert not limiter.try_acquire()

    waited = limiter.acquire()
    # One second left of the backoff, then 0.2s for the first token.
    assert waited == pytest.approx(1.2)


def test_penalize_logs_backoff_event(caplog):
    clock = FakeClock()
    limiter = RateLimiter(clock=clock, sleep=clock.sleep)

    with caplog.at_level("WARNING"):
        limiter.penalize(1.0)

    assert any(getattr(r, "event", None) == "rate_limit_backoff" for r in caplog.records)


def test_limiter_is_shared_across_threads():
    clock = FakeClock()
    limiter = RateLimiter(calls_per_second=5, burst=5, clock=clock, sleep=clock.sleep)
    granted = []

    def worker():
        granted.append(limiter.try_acquire())

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert granted.count(True) == 10


def test_invalid_parameters():
    with pytest.raises(ValueError):
        RateLimiter(0)
    with pytest.raises(ValueError):
        RateLimiter(-1)
    with pytest.raises(ValueError):
        RateLimiter(5, burst=-1)
