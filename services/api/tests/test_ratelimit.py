"""Tests for the admin rate limiters"""
from redis.exceptions import ConnectionError as RedisConnectionError

from admin_api.ratelimit import MemoryRateLimiter, RedisRateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_limit_plus_one_is_denied():
    """The N-th call in a window passes, the (N+1)-th does not"""
    limiter = MemoryRateLimiter(clock=FakeClock())
    for _ in range(5):
        assert limiter.allow("admin-login:1.2.3.4", 5, 60_000) is True

    decision = limiter.check("admin-login:1.2.3.4", 5, 60_000)
    assert decision.allowed is False
    assert decision.retry_after == 60


def test_window_rollover_allows_again():
    """First call after the window elapses starts a fresh count"""
    clock = FakeClock()
    limiter = MemoryRateLimiter(clock=clock)
    for _ in range(3):
        limiter.check("k", 2, 1_000)
    assert limiter.allow("k", 2, 1_000) is False

    clock.now += 1.0
    assert limiter.allow("k", 2, 1_000) is True
    assert limiter.allow("k", 2, 1_000) is True
    assert limiter.allow("k", 2, 1_000) is False


def test_identifiers_are_independent():
    """One noisy client does not consume another's budget"""
    limiter = MemoryRateLimiter(clock=FakeClock())
    assert limiter.allow("a", 1, 60_000) is True
    assert limiter.allow("a", 1, 60_000) is False
    assert limiter.allow("b", 1, 60_000) is True


def test_retry_after_counts_down():
    """retry_after reflects time left in the current window"""
    clock = FakeClock()
    limiter = MemoryRateLimiter(clock=clock)
    limiter.check("k", 1, 60_000)
    clock.now += 45.5
    decision = limiter.check("k", 1, 60_000)
    assert decision.allowed is False
    assert decision.retry_after == 15


def test_sweep_drops_expired_windows():
    """Past the size threshold, expired entries are evicted"""
    clock = FakeClock()
    limiter = MemoryRateLimiter(clock=clock, sweep_threshold=3)
    for i in range(4):
        limiter.check(f"ip-{i}", 10, 1_000)
    assert len(limiter) == 4

    clock.now += 2.0
    limiter.check("fresh", 10, 1_000)
    assert len(limiter) == 1


def test_reset_clears_state():
    """reset() forgets every window"""
    limiter = MemoryRateLimiter(clock=FakeClock())
    limiter.check("k", 1, 60_000)
    assert limiter.allow("k", 1, 60_000) is False
    limiter.reset()
    assert limiter.allow("k", 1, 60_000) is True


class FakeRedis:
    def __init__(self, replies=None, error: Exception | None = None):
        self.replies = list(replies or [])
        self.error = error
        self.calls = []

    def eval(self, script, numkeys, *args):
        self.calls.append((numkeys, args))
        if self.error is not None:
            raise self.error
        return self.replies.pop(0)


def test_redis_limiter_uses_shared_counter():
    """Counts come from the script; over the limit uses the key's pttl"""
    client = FakeRedis(replies=[[1, 60_000], [3, 12_300]])
    limiter = RedisRateLimiter(client, prefix="rl:test")

    assert limiter.check("admin:1.2.3.4:/x", 2, 60_000).allowed is True
    decision = limiter.check("admin:1.2.3.4:/x", 2, 60_000)
    assert decision.allowed is False
    assert decision.retry_after == 13
    assert client.calls[0] == (1, ("rl:test:admin:1.2.3.4:/x", 60_000))


def test_redis_limiter_fail_open():
    """Backend errors let traffic through when configured to fail open"""
    limiter = RedisRateLimiter(FakeRedis(error=RedisConnectionError("down")), fail_open=True)
    assert limiter.allow("k", 1, 60_000) is True


def test_redis_limiter_fail_closed():
    """...and deny it when configured to fail closed"""
    limiter = RedisRateLimiter(FakeRedis(error=RedisConnectionError("down")), fail_open=False)
    decision = limiter.check("k", 1, 60_000)
    assert decision.allowed is False
    assert decision.retry_after == 60
