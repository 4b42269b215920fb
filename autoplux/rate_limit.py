"""
Fixed-window rate limiting for the marketplace API.

Counters live in a pluggable store: an in-process dictionary for single
instance deployments and tests, or Redis when several API workers must share
the same counters.
"""
import logging
import threading
import time
from typing import Dict, Optional, Tuple

import redis
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError, jwt

from . import config
from .auth import security
from .exceptions import RateLimited

logger = logging.getLogger(__name__)


class CounterStore:
    """Counts hits per key within a fixed window."""

    def hit(self, key: str, window: int) -> int:
        """Record one hit and return the count for the current window."""
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError


class InMemoryCounterStore(CounterStore):
    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._last_sweep = clock()

    def hit(self, key: str, window: int) -> int:
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= window:
                self._sweep(now, window)
            started, count = self._windows.get(key, (now, 0))
            if now - started >= window:
                started, count = now, 0
            count += 1
            self._windows[key] = (started, count)
            return count

    def _sweep(self, now: float, window: int) -> None:
        # Expired windows hold no state worth keeping.
        self._windows = {key: entry for key, entry in self._windows.items() if now - entry[0] < window}
        self._last_sweep = now

    def __len__(self) -> int:
        return len(self._windows)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


class RedisCounterStore(CounterStore):
    """
    Redis-backed counters. A key is created by the first hit of a window and
    expires with it.
    """

    def __init__(self, url: str = config.REDIS_URL, prefix: str = "ratelimit"):
        self.client = redis.from_url(url, decode_responses=True)
        self.prefix = prefix

    def hit(self, key: str, window: int) -> int:
        redis_key = f"{self.prefix}:{key}"
        pipe = self.client.pipeline()
        pipe.incr(redis_key)
        pipe.expire(redis_key, window, nx=True)
        count, _ = pipe.execute()
        return int(count)

    def reset(self) -> None:
        keys = self.client.keys(f"{self.prefix}:*")
        if keys:
            self.client.delete(*keys)


class RateLimiter:
    """
    Allow at most ``limit`` requests per key in each ``window`` seconds.

    Example:
        limiter = RateLimiter(InMemoryCounterStore(), limit=10, window=60)
        if not limiter.try_acquire(f"user:{user_id}"):
            raise RateLimited()
    """

    def __init__(self, store: CounterStore, limit: int, window: int):
        self.store = store
        self.limit = limit
        self.window = window

    def try_acquire(self, key: str) -> bool:
        try:
            count = self.store.hit(key, self.window)
        except redis.RedisError as e:
            # Counter store down: let the request through
            logger.warning(f"Rate limit store error for {key}: {e}")
            return True
        return count <= self.limit

    def reset(self) -> None:
        self.store.reset()


def build_store(backend: str = config.RATE_LIMIT_BACKEND) -> CounterStore:
    if backend == "redis":
        return RedisCounterStore(config.REDIS_URL)
    return InMemoryCounterStore()


limiter = RateLimiter(build_store(), config.RATE_LIMIT_REQUESTS, config.RATE_LIMIT_WINDOW_SECONDS)


def caller_key(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = None) -> str:
    """User id from a valid bearer token, else the client address."""
    if credentials is not None:
        try:
            payload = jwt.decode(credentials.credentials, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        except JWTError:
            payload = {}
        if payload.get("sub"):
            return f"user:{payload['sub']}"
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


def rate_limit(scope: str):
    """Build a FastAPI dependency limiting ``scope`` per caller."""
    def dependency(
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    ) -> None:
        key = f"{scope}:{caller_key(request, credentials)}"
        if not limiter.try_acquire(key):
            logger.info(f"Rate limit exceeded for {key}")
            raise RateLimited(
                "Too many requests, please try again later",
                headers={"Retry-After": str(limiter.window)},
            )
    return dependency
