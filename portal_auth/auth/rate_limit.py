"""
Rate limiting primitives for brute-force-sensitive operations.

- ExpiringTokenBucket: fixed capacity per key, refilled completely once its
  window (measured from the first consume) has elapsed. Redis-backed when a
  client is given, with in-memory fallback.
- RefillingTokenBucket: capacity per key, one token back per interval.
- Throttler: escalating lockout between attempts for one key.

None of these are module-level singletons: RateLimits.create() builds the
set used by the API and the application owns it.
"""
import os
import time
import logging
import threading
from dataclasses import dataclass
from typing import Optional, Dict, List, Hashable

import redis

logger = logging.getLogger(__name__)


@dataclass
class _ExpiringBucket:
    count: int
    created_at: float


@dataclass
class _RefillingBucket:
    count: int
    refilled_at: float


@dataclass
class _ThrottlingCounter:
    timeout_index: int
    updated_at: float


class ExpiringTokenBucket:
    """
    Fixed-capacity counter per key that refills fully after a time window.

    Example:
        bucket = ExpiringTokenBucket(max_tokens=5, expires_in_seconds=1800, name="totp")
        if not bucket.consume(user_id):
            raise TooManyRequests()
    """

    def __init__(
        self,
        max_tokens: int,
        expires_in_seconds: int,
        name: str = "bucket",
        redis_client: Optional[redis.Redis] = None,
    ):
        self.max_tokens = max_tokens
        self.expires_in_seconds = expires_in_seconds
        self.name = name
        self.redis = redis_client
        # In-memory fallback storage
        self._memory_store: Dict[Hashable, _ExpiringBucket] = {}
        self._lock = threading.Lock()

    def _redis_key(self, key: Hashable) -> str:
        return f"portal:bucket:{self.name}:{key}"

    # ------------------------------------------
    # In-memory backend
    # ------------------------------------------

    def _check_memory(self, key: Hashable, cost: int) -> bool:
        now = time.time()
        with self._lock:
            bucket = self._memory_store.get(key)
            if bucket is None:
                return cost <= self.max_tokens
            if now - bucket.created_at >= self.expires_in_seconds:
                return cost <= self.max_tokens
            return bucket.count >= cost

    def _consume_memory(self, key: Hashable, cost: int) -> bool:
        now = time.time()
        with self._lock:
            bucket = self._memory_store.get(key)
            if bucket is None:
                bucket = _ExpiringBucket(count=self.max_tokens, created_at=now)
                self._memory_store[key] = bucket
            elif now - bucket.created_at >= self.expires_in_seconds:
                bucket.count = self.max_tokens
                bucket.created_at = now

            if bucket.count < cost:
                return False
            bucket.count -= cost
            return True

    # ------------------------------------------
    # Redis backend (key holds tokens used, TTL is the window)
    # ------------------------------------------

    def _check_redis(self, key: Hashable, cost: int) -> bool:
        used = self.redis.get(self._redis_key(key))
        return self.max_tokens - int(used or 0) >= cost

    def _consume_redis(self, key: Hashable, cost: int) -> bool:
        full_key = self._redis_key(key)
        pipe = self.redis.pipeline()
        pipe.incrby(full_key, cost)
        pipe.ttl(full_key)
        used, ttl = pipe.execute()
        if ttl < 0:
            # First consume of this window
            self.redis.expire(full_key, self.expires_in_seconds)
        if used > self.max_tokens:
            self.redis.decrby(full_key, cost)
            return False
        return True

    # ------------------------------------------
    # Public API
    # ------------------------------------------

    def check(self, key: Hashable, cost: int = 1) -> bool:
        """Return True if consume(key, cost) would currently succeed. Does not mutate."""
        if self.redis is not None:
            try:
                return self._check_redis(key, cost)
            except redis.RedisError as e:
                logger.warning(f"Redis error in bucket '{self.name}' check: {e}")
        return self._check_memory(key, cost)

    def consume(self, key: Hashable, cost: int = 1) -> bool:
        """Take cost tokens for key. Returns False when not enough remain in the window."""
        if self.redis is not None:
            try:
                return self._consume_redis(key, cost)
            except redis.RedisError as e:
                logger.warning(f"Redis error in bucket '{self.name}' consume: {e}")
        allowed = self._consume_memory(key, cost)
        if not allowed:
            logger.info(f"Bucket '{self.name}' exhausted for key {key}")
        return allowed

    def remaining(self, key: Hashable) -> int:
        """Tokens left for key in the current window."""
        if self.redis is not None:
            try:
                used = self.redis.get(self._redis_key(key))
                return max(0, self.max_tokens - int(used or 0))
            except redis.RedisError as e:
                logger.warning(f"Redis error in bucket '{self.name}' remaining: {e}")
        now = time.time()
        with self._lock:
            bucket = self._memory_store.get(key)
            if bucket is None or now - bucket.created_at >= self.expires_in_seconds:
                return self.max_tokens
            return bucket.count

    def reset(self, key: Hashable) -> None:
        """Forget key, giving it a full bucket on next use."""
        if self.redis is not None:
            try:
                self.redis.delete(self._redis_key(key))
            except redis.RedisError as e:
                logger.warning(f"Redis error in bucket '{self.name}' reset: {e}")
        with self._lock:
            self._memory_store.pop(key, None)


class RefillingTokenBucket:
    """Capacity max_tokens per key; one token returns every refill_interval_seconds."""

    def __init__(self, max_tokens: int, refill_interval_seconds: float, name: str = "bucket"):
        self.max_tokens = max_tokens
        self.refill_interval_seconds = refill_interval_seconds
        self.name = name
        self._storage: Dict[Hashable, _RefillingBucket] = {}
        self._lock = threading.Lock()

    def _refill(self, bucket: _RefillingBucket, now: float) -> None:
        refill = int((now - bucket.refilled_at) // self.refill_interval_seconds)
        bucket.count = min(bucket.count + refill, self.max_tokens)
        bucket.refilled_at += refill * self.refill_interval_seconds

    def check(self, key: Hashable, cost: int = 1) -> bool:
        now = time.time()
        with self._lock:
            bucket = self._storage.get(key)
            if bucket is None:
                return cost <= self.max_tokens
            refill = int((now - bucket.refilled_at) // self.refill_interval_seconds)
            return min(bucket.count + refill, self.max_tokens) >= cost

    def consume(self, key: Hashable, cost: int = 1) -> bool:
        now = time.time()
        with self._lock:
            bucket = self._storage.get(key)
            if bucket is None:
                if cost > self.max_tokens:
                    return False
                self._storage[key] = _RefillingBucket(count=self.max_tokens - cost, refilled_at=now)
                return True
            self._refill(bucket, now)
            if bucket.count < cost:
                return False
            bucket.count -= cost
            return True


class Throttler:
    """
    Escalating delay between attempts for one key.

    timeout_seconds[i] is the wait required after the i-th accepted attempt;
    the last entry repeats.
    """

    def __init__(self, timeout_seconds: List[int], name: str = "throttler"):
        self.timeout_seconds = timeout_seconds
        self.name = name
        self._storage: Dict[Hashable, _ThrottlingCounter] = {}
        self._lock = threading.Lock()

    def consume(self, key: Hashable) -> bool:
        now = time.time()
        with self._lock:
            counter = self._storage.get(key)
            if counter is None:
                self._storage[key] = _ThrottlingCounter(timeout_index=0, updated_at=now)
                return True
            if now - counter.updated_at < self.timeout_seconds[counter.timeout_index]:
                return False
            counter.updated_at = now
            counter.timeout_index = min(counter.timeout_index + 1, len(self.timeout_seconds) - 1)
            return True

    def reset(self, key: Hashable) -> None:
        with self._lock:
            self._storage.pop(key, None)


@dataclass
class RateLimits:
    """The rate limiters the API uses, built once per application."""
    totp: ExpiringTokenBucket
    recovery_code: ExpiringTokenBucket
    send_verification_email: ExpiringTokenBucket
    email_verification: ExpiringTokenBucket
    global_ip: RefillingTokenBucket
    login_ip: RefillingTokenBucket
    login_throttler: Throttler
    password_reset_ip: RefillingTokenBucket
    password_reset_user: RefillingTokenBucket
    totp_update: RefillingTokenBucket

    @classmethod
    def create(cls, redis_client: Optional[redis.Redis] = None) -> "RateLimits":
        return cls(
            totp=ExpiringTokenBucket(5, 60 * 30, name="totp", redis_client=redis_client),
            recovery_code=ExpiringTokenBucket(3, 60 * 60, name="recovery_code", redis_client=redis_client),
            send_verification_email=ExpiringTokenBucket(
                3, 60 * 10, name="send_verification_email", redis_client=redis_client
            ),
            email_verification=ExpiringTokenBucket(5, 60 * 30, name="email_verification", redis_client=redis_client),
            global_ip=RefillingTokenBucket(100, 1, name="global_ip"),
            login_ip=RefillingTokenBucket(20, 1, name="login_ip"),
            login_throttler=Throttler([1, 2, 4, 8, 16, 30, 60, 180, 300], name="login"),
            password_reset_ip=RefillingTokenBucket(3, 60, name="password_reset_ip"),
            password_reset_user=RefillingTokenBucket(3, 60, name="password_reset_user"),
            totp_update=RefillingTokenBucket(3, 60 * 10, name="totp_update"),
        )

    @classmethod
    def from_env(cls, redis_client_factory=None) -> "RateLimits":
        """
        Build limiters, Redis-backed when RATE_LIMIT_BACKEND=redis.

        Args:
            redis_client_factory: Callable returning a Redis client or None.
        """
        backend = os.getenv("RATE_LIMIT_BACKEND", "memory").lower()
        redis_client = None
        if backend == "redis" and redis_client_factory is not None:
            redis_client = redis_client_factory()
        logger.info(f"Rate limits using {'redis' if redis_client else 'in-memory'} backend")
        return cls.create(redis_client)
