"""
Throttling for the public endpoints a client could brute-force: magic-link
requests, admin login with the secret code, and gift code validation.

Every client IP gets one token bucket per endpoint path (see `client_key`).
A bucket starts full with RATE_LIMIT_CALLS tokens and refills continuously,
so an empty bucket is full again after RATE_LIMIT_WINDOW seconds.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Dict, Optional

from utils.get_env import (
    get_rate_limit_calls_env,
    get_rate_limit_enabled_env,
    get_rate_limit_window_env,
)

logger = logging.getLogger(__name__)

DEFAULT_CALLS_PER_WINDOW = 20
DEFAULT_WINDOW_SECONDS = 600


def _positive_int(raw: Optional[str], default: int) -> int:
    try:
        value = int(raw) if raw else default
    except ValueError:
        logger.warning(f"Ignoring invalid rate limit value {raw!r}, using {default}")
        return default
    return value if value > 0 else default


def client_key(client_ip: str, path: str) -> str:
    """Bucket key for one client on one endpoint."""
    return f"ip:{client_ip}:{path}"


class _Bucket:
    __slots__ = ("tokens", "refilled_at")

    def __init__(self, tokens: float, refilled_at: float):
        self.tokens = tokens
        self.refilled_at = refilled_at


class RateLimiter:
    """
    Token buckets keyed by `client_key`.

    Environment:
    - RATE_LIMIT_CALLS: attempts per client and endpoint per window (default: 20)
    - RATE_LIMIT_WINDOW: window in seconds (default: 600)
    - RATE_LIMIT_ENABLED: "false" turns throttling off (default: on)
    """

    def __init__(
        self,
        calls_per_window: Optional[int] = None,
        window_seconds: Optional[int] = None,
        enabled: Optional[bool] = None,
    ):
        self.calls_per_window = calls_per_window or _positive_int(
            get_rate_limit_calls_env(), DEFAULT_CALLS_PER_WINDOW
        )
        self.window_seconds = window_seconds or _positive_int(
            get_rate_limit_window_env(), DEFAULT_WINDOW_SECONDS
        )
        if enabled is None:
            enabled = (get_rate_limit_enabled_env() or "true").strip().lower() != "false"
        self.enabled = enabled
        self.buckets: Dict[str, _Bucket] = {}

        logger.info(
            f"Endpoint throttling {'on' if self.enabled else 'off'}: "
            f"{self.calls_per_window} attempts per {self.window_seconds}s per client and endpoint"
        )

    @property
    def refill_rate(self) -> float:
        """Tokens regained per second."""
        return self.calls_per_window / self.window_seconds

    def _bucket(self, key: str) -> _Bucket:
        now = time.time()
        bucket = self.buckets.get(key)
        if bucket is None:
            bucket = self.buckets[key] = _Bucket(float(self.calls_per_window), now)
            return bucket

        elapsed = now - bucket.refilled_at
        bucket.tokens = min(float(self.calls_per_window), bucket.tokens + elapsed * self.refill_rate)
        bucket.refilled_at = now
        return bucket

    def is_allowed(self, key: str, tokens_cost: int = 1) -> bool:
        """Take `tokens_cost` tokens from the bucket; False when it cannot pay."""
        if not self.enabled:
            return True

        bucket = self._bucket(key)
        if bucket.tokens >= tokens_cost:
            bucket.tokens -= tokens_cost
            return True

        logger.warning(f"Throttled {key}: {bucket.tokens:.1f} attempts left, needs {tokens_cost}")
        return False

    def get_remaining_calls(self, key: str) -> float:
        if not self.enabled:
            return float("inf")
        return self._bucket(key).tokens

    def get_reset_time(self, key: str) -> Optional[datetime]:
        """When the bucket is full again, or None if it already is."""
        if not self.enabled:
            return None

        bucket = self.buckets.get(key)
        if bucket is None:
            return None
        missing = self.calls_per_window - bucket.tokens
        if missing <= 0:
            return None
        return datetime.now() + timedelta(seconds=missing / self.refill_rate)

    def reset(self, key: Optional[str] = None) -> None:
        """Refill one bucket, or forget every bucket when no key is given."""
        if key:
            self.buckets.pop(key, None)
            logger.info(f"Throttling reset for {key}")
        else:
            self.buckets.clear()
            logger.info("Throttling reset for all clients")


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def check_rate_limit(key: str, tokens_cost: int = 1) -> tuple[bool, Dict[str, str]]:
    """
    Charge one attempt against `key`.

    Returns (allowed, headers) where headers carry the X-RateLimit-* values
    for the response.
    """
    limiter = get_rate_limiter()
    allowed = limiter.is_allowed(key, tokens_cost)
    remaining = limiter.get_remaining_calls(key)
    if remaining == float("inf"):
        remaining = limiter.calls_per_window
    reset_time = limiter.get_reset_time(key)

    headers = {
        "X-RateLimit-Limit": str(limiter.calls_per_window),
        "X-RateLimit-Remaining": str(int(max(0, remaining))),
        "X-RateLimit-Window-Seconds": str(limiter.window_seconds),
    }
    if reset_time:
        headers["X-RateLimit-Reset"] = str(int(reset_time.timestamp()))

    return allowed, headers
