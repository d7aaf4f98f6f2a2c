"""Cache-backed rate limiters.

State lives in the Django cache so every worker sees the same counters when
the cache is Redis. Entries carry a TTL matching their window, so stale keys
disappear on their own.
"""
import math
import time
from dataclasses import dataclass
from typing import List, Optional

from django.core.cache import cache
import logging
logger = logging.getLogger('ratelimit')

from astroluna.utils import redis_cache_enabled


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset: int  # epoch seconds
    window: int
    retry_after: int = 0


class FixedWindowLimiter:
    """Counter per key that resets when its window expires."""

    KEY_PREFIX = "rl:fixed:"

    def __init__(self, limit: int, window: int) -> None:
        self.limit = int(limit)
        self.window = int(window)

    def _keys(self, key: str):
        count_key = self.KEY_PREFIX + key
        return count_key, count_key + ":reset"

    def hit(self, key: str, now: Optional[float] = None) -> RateLimitResult:
        now = time.time() if now is None else now
        count_key, reset_key = self._keys(key)

        # cache.add is atomic: only the first request of a window creates the counter
        if cache.add(count_key, 0, self.window):
            reset_at = now + self.window
            cache.set(reset_key, reset_at, self.window)
        else:
            reset_at = cache.get(reset_key) or (now + self.window)

        try:
            count = cache.incr(count_key)
        except ValueError:
            # counter expired between add and incr; start a new window
            cache.set(count_key, 1, self.window)
            reset_at = now + self.window
            cache.set(reset_key, reset_at, self.window)
            count = 1

        allowed = count <= self.limit
        return RateLimitResult(
            allowed=allowed,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset=math.ceil(reset_at),
            window=self.window,
            retry_after=0 if allowed else max(1, math.ceil(reset_at - now)),
        )

    def refund(self, key: str) -> None:
        """Give back one request, e.g. when successful responses are not counted."""
        count_key, _ = self._keys(key)
        try:
            if (cache.get(count_key) or 0) > 0:
                cache.decr(count_key)
        except ValueError:
            logger.debug("refund: counter %s already expired", count_key)


class SlidingWindowLimiter:
    """Timestamp log per key; only requests inside the trailing window count."""

    KEY_PREFIX = "rl:sliding:"

    def __init__(self, limit: int, window: int) -> None:
        self.limit = int(limit)
        self.window = int(window)

    def hit(self, key: str, now: Optional[float] = None) -> RateLimitResult:
        now = time.time() if now is None else now
        log_key = self.KEY_PREFIX + key
        window_start = now - self.window
        history: List[float] = [t for t in (cache.get(log_key) or []) if t > window_start]

        if len(history) >= self.limit:
            oldest = min(history)
            cache.set(log_key, history, self.window)
            return RateLimitResult(
                allowed=False,
                limit=self.limit,
                remaining=0,
                reset=math.ceil(oldest + self.window),
                window=self.window,
                retry_after=max(1, math.ceil(oldest + self.window - now)),
            )

        history.append(now)
        cache.set(log_key, history, self.window)
        return RateLimitResult(
            allowed=True,
            limit=self.limit,
            remaining=max(0, self.limit - len(history)),
            reset=math.ceil(min(history) + self.window),
            window=self.window,
        )


# KEYS[1] bucket hash; ARGV: capacity, refill_rate, refill_interval, now, requested, ttl
_TOKEN_BUCKET_LUA = """
local capacity = tonumber(ARGV[1])
local rate = tonumber(ARGV[2])
local interval = tonumber(ARGV[3])
local now = tonumber(ARGV[4])
local requested = tonumber(ARGV[5])
local ttl = tonumber(ARGV[6])
local state = redis.call('HMGET', KEYS[1], 'tokens', 'last')
local tokens = tonumber(state[1])
local last = tonumber(state[2])
if tokens == nil or last == nil then
  tokens = capacity
  last = now
end
local intervals = math.floor((now - last) / interval)
if intervals > 0 then
  tokens = math.min(capacity, tokens + intervals * rate)
  last = last + intervals * interval
end
local allowed = 0
if tokens >= requested then
  tokens = tokens - requested
  allowed = 1
end
redis.call('HSET', KEYS[1], 'tokens', tokens, 'last', tostring(last))
redis.call('EXPIRE', KEYS[1], ttl)
return {allowed, tokens, tostring(last)}
"""


class TokenBucketLimiter:
    """Bucket of `capacity` tokens refilled by `refill_rate` every `refill_interval` seconds."""

    KEY_PREFIX = "rl:bucket:"
    REDIS_KEY_PREFIX = "astroluna:rl:bucket:"

    def __init__(self, capacity: int, refill_rate: int, refill_interval: float = 1.0) -> None:
        self.capacity = int(capacity)
        self.refill_rate = int(refill_rate)
        self.refill_interval = float(refill_interval)

    @property
    def ttl(self) -> int:
        # long enough for an empty bucket to refill completely
        return max(1, math.ceil(self.capacity / max(1, self.refill_rate) * self.refill_interval))

    def _refill(self, tokens: int, last: float, now: float):
        intervals = int((now - last) // self.refill_interval)
        if intervals > 0:
            tokens = min(self.capacity, tokens + intervals * self.refill_rate)
            last = last + intervals * self.refill_interval
        return tokens, last

    def _result(self, allowed: bool, tokens: int, last: float, now: float) -> RateLimitResult:
        next_refill = last + self.refill_interval
        return RateLimitResult(
            allowed=allowed,
            limit=self.capacity,
            remaining=int(tokens),
            reset=math.ceil(next_refill),
            window=math.ceil(self.refill_interval),
            retry_after=0 if allowed else max(1, math.ceil(next_refill - now)),
        )

    def consume(self, key: str, tokens: int = 1, now: Optional[float] = None) -> RateLimitResult:
        now = time.time() if now is None else now
        if redis_cache_enabled():
            return self._consume_redis(key, tokens, now)

        bucket_key = self.KEY_PREFIX + key
        state = cache.get(bucket_key) or {"tokens": self.capacity, "last": now}
        available, last = self._refill(state["tokens"], state["last"], now)
        allowed = available >= tokens
        if allowed:
            available -= tokens
        cache.set(bucket_key, {"tokens": available, "last": last}, self.ttl)
        return self._result(allowed, available, last, now)

    def _consume_redis(self, key: str, tokens: int, now: float) -> RateLimitResult:
        from django_redis import get_redis_connection
        conn = get_redis_connection('default')
        allowed, available, last = conn.eval(
            _TOKEN_BUCKET_LUA, 1, self.REDIS_KEY_PREFIX + key,
            self.capacity, self.refill_rate, self.refill_interval, now, tokens, self.ttl,
        )
        if isinstance(last, (bytes, bytearray)):
            last = last.decode()
        return self._result(bool(int(allowed)), int(available), float(last), now)
