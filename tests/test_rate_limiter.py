import pytest

from circuitwatch.broker.kite.rate_limit import RateLimitedError, RateLimiter, is_rate_limit_error


def _fake_time():
    clock = {"now": 0.0}
    slept: list[float] = []

    def sleep(seconds):
        slept.append(seconds)
        clock["now"] += seconds

    return clock, slept, (lambda: clock["now"]), sleep


def test_bucket_allows_burst_then_waits_for_refill():
    clock, slept, now, sleep = _fake_time()
    rl = RateLimiter(qps=2.0, burst=2, clock=now, sleep=sleep)
    rl.acquire()
    rl()
    assert slept == []
    rl.acquire()
    assert slept == [0.5]


def test_refill_caps_at_capacity():
    clock, slept, now, sleep = _fake_time()
    rl = RateLimiter(qps=1.0, burst=2, clock=now, sleep=sleep)
    rl.acquire()
    rl.acquire()
    clock["now"] += 100.0
    rl.acquire()
    rl.acquire()
    assert slept == []
    rl.acquire()
    assert slept == [1.0]


def test_consecutive_rate_limit_errors_open_cooldown():
    clock, slept, now, sleep = _fake_time()
    rl = RateLimiter(qps=5.0, burst=5, consecutive_threshold=2, cooldown_seconds=10.0, clock=now, sleep=sleep)
    rl.record_rate_limit_error()
    assert not rl.cooldown_active()
    rl.record_rate_limit_error()
    assert rl.cooldown_active()
    with pytest.raises(RateLimitedError):
        rl.acquire(fast_fail=True)
    rl.acquire()
    assert slept == [1.0] * 10
    assert not rl.cooldown_active()


def test_success_resets_consecutive_counter():
    clock, slept, now, sleep = _fake_time()
    rl = RateLimiter(qps=5.0, consecutive_threshold=2, clock=now, sleep=sleep)
    rl.record_rate_limit_error()
    rl.record_success()
    rl.record_rate_limit_error()
    assert not rl.cooldown_active()


def test_rate_limit_error_detection():
    assert is_rate_limit_error(Exception("Too many requests"))
    assert is_rate_limit_error(Exception("HTTP 429"))
    assert not is_rate_limit_error(Exception("Invalid token"))
