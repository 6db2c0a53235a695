from sitequeue.rate_limit import RateLimiter


class FakeTime:
    def __init__(self, t=1000.0):
        self.t = t

    def __call__(self):
        return self.t


def test_window_limits_and_recovers():
    now = FakeTime()
    limiter = RateLimiter(2, window_seconds=60, clock=now)
    assert limiter.check("a").allowed
    assert limiter.check("a").allowed
    blocked = limiter.check("a")
    assert not blocked.allowed
    assert blocked.retry_after == 60
    assert limiter.check("b").allowed

    now.t += 30
    assert limiter.check("a").retry_after == 30

    now.t += 30
    assert limiter.check("a").allowed


def test_rejected_hits_are_not_counted():
    now = FakeTime()
    limiter = RateLimiter(1, window_seconds=10, clock=now)
    assert limiter.check("a").allowed
    for _ in range(5):
        now.t += 1
        assert not limiter.check("a").allowed
    now.t += 5
    assert limiter.check("a").allowed


def test_idle_clients_are_forgotten():
    now = FakeTime()
    limiter = RateLimiter(5, window_seconds=60, clock=now)
    for i in range(10_000):
        limiter.check(f"10.{i // 65536}.{i // 256 % 256}.{i % 256}")
    assert len(limiter) == 10_000

    now.t += 3600
    assert limiter.check("192.168.0.1").allowed
    assert len(limiter) == 1


def test_recent_clients_survive_the_sweep():
    now = FakeTime()
    limiter = RateLimiter(1, window_seconds=60, clock=now)
    limiter.check("old")
    now.t += 50
    limiter.check("recent")
    now.t += 20
    limiter.check("new")
    assert len(limiter) == 2
    assert not limiter.check("recent").allowed
