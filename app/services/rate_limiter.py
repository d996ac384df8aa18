"""
Rate limiter for touch-up API calls.

Touch-up calls are expensive and the edit API enforces per-key limits, so
every call goes through a shared token bucket:
- steady refill of `requests_per_minute` tokens per minute
- small burst capacity
- exponential backoff after a 429, starting at 30 seconds
"""

import logging
import threading
import time
from collections import deque
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)

BASE_BACKOFF_SECONDS = 30.0
MAX_BACKOFF_SECONDS = 300.0


class TouchUpRateLimiter:
    """
    Thread-safe token bucket shared by every touch-up call in the process.

    Panels are rendered in worker threads, so two panels of the same request
    can contend for tokens; the lock keeps the bucket consistent.
    """

    def __init__(
        self,
        requests_per_minute: int = 30,
        burst_capacity: int = 3,
        min_interval_seconds: float = 0.0,
    ):
        self.requests_per_minute = requests_per_minute
        self.burst_capacity = burst_capacity
        self.min_interval_seconds = min_interval_seconds

        self.tokens = float(burst_capacity)
        self.max_tokens = float(burst_capacity)
        self.refill_rate = requests_per_minute / 60.0  # tokens per second
        self.last_refill = time.monotonic()

        self.request_times: deque = deque(maxlen=max(requests_per_minute, 1))
        self.last_request_time = 0.0

        self.rate_limited_until: Optional[float] = None
        self.consecutive_429s = 0
        self.backoff_multiplier = 1.0

        self.lock = threading.RLock()

        logger.info(
            "Touch-up rate limiter initialized: %d req/min, burst %d, min interval %.1fs",
            requests_per_minute,
            burst_capacity,
            min_interval_seconds,
        )

    def _refill_tokens(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def _is_rate_limited(self) -> bool:
        """Check if we're currently in a backoff period after a 429."""
        if self.rate_limited_until is None:
            return False

        if time.monotonic() < self.rate_limited_until:
            return True

        self.rate_limited_until = None
        self.consecutive_429s = 0
        self.backoff_multiplier = 1.0
        logger.info("Touch-up backoff period expired, resuming normal operation")
        return False

    def _calculate_backoff(self) -> float:
        # First 429: 30s, second: 60s, third: 120s, capped at 5 minutes.
        exponential_factor = 2 ** (self.consecutive_429s - 1)
        return min(BASE_BACKOFF_SECONDS * exponential_factor, MAX_BACKOFF_SECONDS)

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Block until a touch-up call may be made.

        Args:
            timeout: Maximum time to wait in seconds (None = wait forever)

        Returns:
            True if permission granted, False if the timeout was reached
        """
        start_time = time.monotonic()

        while True:
            with self.lock:
                if self._is_rate_limited():
                    if timeout is not None and time.monotonic() - start_time >= timeout:
                        logger.warning("Touch-up rate limiter timeout reached during backoff")
                        return False
                    wait_time = self.rate_limited_until - time.monotonic()
                    sleep_for = min(1.0, max(wait_time, 0.0))
                else:
                    self._refill_tokens()
                    if self.tokens >= 1.0:
                        now = time.monotonic()
                        since_last = now - self.last_request_time
                        if self.last_request_time and since_last < self.min_interval_seconds:
                            time.sleep(self.min_interval_seconds - since_last)
                            now = time.monotonic()

                        self.tokens -= 1.0
                        self.last_request_time = now
                        self.request_times.append(now)
                        logger.debug(
                            "Touch-up token acquired (remaining %.1f/%.1f)", self.tokens, self.max_tokens
                        )
                        return True

                    if timeout is not None and time.monotonic() - start_time >= timeout:
                        logger.warning("Touch-up rate limiter timeout reached (no tokens)")
                        return False
                    sleep_for = 0.1

            if timeout is not None:
                remaining = timeout - (time.monotonic() - start_time)
                sleep_for = min(sleep_for, max(remaining, 0.0))
            time.sleep(sleep_for)

    def report_429(self) -> None:
        """Record a 429 response and start an exponential backoff."""
        with self.lock:
            self.consecutive_429s += 1
            backoff = self._calculate_backoff()
            self.rate_limited_until = time.monotonic() + backoff

            self.backoff_multiplier = max(0.5, self.backoff_multiplier * 0.8)
            self.max_tokens = self.burst_capacity * self.backoff_multiplier
            self.tokens = min(self.tokens, self.max_tokens)

            logger.error(
                "Touch-up 429 (consecutive: %d). Backing off for %.1fs, burst capacity now %.1f",
                self.consecutive_429s,
                backoff,
                self.max_tokens,
            )

    def report_success(self) -> None:
        """Gradually restore capacity after earlier 429s."""
        with self.lock:
            if self.consecutive_429s > 0:
                self.backoff_multiplier = min(1.0, self.backoff_multiplier * 1.1)
                self.max_tokens = self.burst_capacity * self.backoff_multiplier
                self.consecutive_429s -= 1
                logger.info("Touch-up succeeded, 429 counter now %d", self.consecutive_429s)

    def get_stats(self) -> dict:
        with self.lock:
            now = time.monotonic()
            cutoff = now - 60.0
            recent_requests = sum(1 for t in self.request_times if t > cutoff)
            limited_for = (self.rate_limited_until - now) if self.rate_limited_until else 0.0
            return {
                "tokens_available": self.tokens,
                "max_tokens": self.max_tokens,
                "requests_last_minute": recent_requests,
                "max_requests_per_minute": self.requests_per_minute,
                "is_rate_limited": self._is_rate_limited(),
                "consecutive_429s": self.consecutive_429s,
                "backoff_multiplier": self.backoff_multiplier,
                "rate_limited_until": (
                    datetime.fromtimestamp(time.time() + limited_for).isoformat()
                    if self.rate_limited_until
                    else None
                ),
            }
