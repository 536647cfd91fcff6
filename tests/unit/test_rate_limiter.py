"""Unit tests for the fixed-window rate limiter."""

from qwen_gateway.middlewares import FixedWindowRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_allows_up_to_limit():
    limiter = FixedWindowRateLimiter(limit=3, window=60, clock=FakeClock())
    results = [limiter.hit("1.2.3.4")[0] for _ in range(4)]
    assert results == [True, True, True, False]


def test_keys_are_independent():
    limiter = FixedWindowRateLimiter(limit=1, window=60, clock=FakeClock())
    assert limiter.hit("a")[0] is True
    assert limiter.hit("b")[0] is True
    assert limiter.hit("a")[0] is False


def test_window_resets():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(limit=1, window=60, clock=clock)
    assert limiter.hit("a")[0] is True
    assert limiter.hit("a")[0] is False
    clock.now += 60
    assert limiter.hit("a")[0] is True


def test_retry_after_counts_down():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(limit=1, window=60, clock=clock)
    limiter.hit("a")
    clock.now += 15
    allowed, retry_after = limiter.hit("a")
    assert allowed is False
    assert retry_after == 45


def test_expired_windows_pruned():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(limit=5, window=10, clock=clock)
    limiter.hit("old")
    clock.now += 20
    limiter.hit("new")
    assert set(limiter._windows) == {"new"}
