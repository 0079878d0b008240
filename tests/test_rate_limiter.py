import pytest

from src.rate_limiter import RateLimiter


class FakeClock:
    """Monotonic clock advanced only by the limiter's sleep calls."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_first_call_never_waits():
    clock = FakeClock()
    limiter = RateLimiter(1.0, clock=clock, sleep=clock.sleep)
    assert limiter.acquire() == 0.0
    assert clock.sleeps == []


def test_min_interval_spacing():
    clock = FakeClock()
    limiter = RateLimiter(1.0, clock=clock, sleep=clock.sleep)
    limiter.acquire()
    clock.now += 0.25
    waited = limiter.acquire()
    assert waited == pytest.approx(0.75)
    clock.now += 5
    assert limiter.acquire() == 0.0


def test_per_minute_budget():
    clock = FakeClock()
    limiter = RateLimiter(0.0, max_per_minute=3, clock=clock, sleep=clock.sleep)
    for _ in range(3):
        assert limiter.acquire() == 0.0
        clock.now += 1
    # Fourth call in the same minute waits until the first slot expires
    waited = limiter.acquire()
    assert waited == pytest.approx(57.0)


def test_negative_interval_rejected():
    with pytest.raises(ValueError):
        RateLimiter(-0.5)
