# services/api/admin_api/ratelimit.py

"""
Request counters for the admin surface.

MemoryRateLimiter keeps its state in this process only. Behind N horizontally
scaled instances the effective global limit is limit x N, not limit. Deployments
that need a global limit set RATE_LIMIT_BACKEND=redis, which swaps in
RedisRateLimiter without touching call sites.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, NamedTuple

from .config import settings

LOG = logging.getLogger("admin_api.ratelimit")


class RateLimitDecision(NamedTuple):
    allowed: bool
    retry_after: int  # seconds until the window resets (0 when allowed)


@dataclass
class _Window:
    count: int
    reset_at: float  # clock seconds


class MemoryRateLimiter:
    """Fixed window per identifier over a lock-protected dict."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_threshold: int | None = None,
    ):
        self._clock = clock
        self._sweep_threshold = int(sweep_threshold if sweep_threshold is not None else settings.RATE_LIMIT_SWEEP_THRESHOLD)
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def check(self, identifier: str, limit: int, window_ms: int) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            if len(self._windows) > self._sweep_threshold:
                self._sweep(now)

            w = self._windows.get(identifier)
            if w is None or w.reset_at <= now:
                self._windows[identifier] = _Window(count=1, reset_at=now + window_ms / 1000.0)
                return RateLimitDecision(True, 0)

            w.count += 1
            if w.count > limit:
                return RateLimitDecision(False, max(1, math.ceil(w.reset_at - now)))
            return RateLimitDecision(True, 0)

    def allow(self, identifier: str, limit: int, window_ms: int) -> bool:
        return self.check(identifier, limit, window_ms).allowed

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _sweep(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if w.reset_at <= now]
        for k in expired:
            del self._windows[k]
        if expired:
            LOG.debug("rate_limit_sweep removed=%s remaining=%s", len(expired), len(self._windows))


_LUA_INCR_PEXPIRE = """
local current = redis.call("INCR", KEYS[1])
if current == 1 then
  redis.call("PEXPIRE", KEYS[1], tonumber(ARGV[1]))
end
local ttl = redis.call("PTTL", KEYS[1])
return {current, ttl}
"""


class RedisRateLimiter:
    """Shared counter across instances (INCR + PEXPIRE in one script)."""

    def __init__(self, client, *, prefix: str = "rl:admin", fail_open: bool | None = None):
        self._redis = client
        self._prefix = prefix
        self._fail_open = bool(settings.RATE_LIMIT_FAIL_OPEN if fail_open is None else fail_open)

    def check(self, identifier: str, limit: int, window_ms: int) -> RateLimitDecision:
        key = f"{self._prefix}:{identifier}"
        try:
            count, ttl_ms = self._redis.eval(_LUA_INCR_PEXPIRE, 1, key, int(window_ms))
            count = int(count)
            ttl_ms = int(ttl_ms)
        except Exception:
            # redis down / script error: policy decides, never crash the request
            LOG.exception("rate_limit_backend_error key=%s fail_open=%s", key, self._fail_open)
            if self._fail_open:
                return RateLimitDecision(True, 0)
            return RateLimitDecision(False, max(1, math.ceil(window_ms / 1000)))

        if count > limit:
            retry_ms = ttl_ms if ttl_ms > 0 else window_ms
            return RateLimitDecision(False, max(1, math.ceil(retry_ms / 1000)))
        return RateLimitDecision(True, 0)

    def allow(self, identifier: str, limit: int, window_ms: int) -> bool:
        return self.check(identifier, limit, window_ms).allowed

    def reset(self) -> None:
        # shared state; nothing process-local to clear
        return None


def build_rate_limiter():
    backend = (settings.RATE_LIMIT_BACKEND or "memory").lower()
    if backend == "redis":
        if not settings.REDIS_URL:
            raise RuntimeError("RATE_LIMIT_BACKEND=redis requires REDIS_URL")
        from redis import Redis
        return RedisRateLimiter(Redis.from_url(settings.REDIS_URL, decode_responses=True))
    if backend != "memory":
        raise RuntimeError(f"Unknown RATE_LIMIT_BACKEND: {settings.RATE_LIMIT_BACKEND}")
    return MemoryRateLimiter()
