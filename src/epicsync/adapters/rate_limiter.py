"""
Rate Limiter - Token bucket shared by the tracker clients.

Both GitHub and Azure DevOps publish their remaining budget in response
headers. The limiter paces requests locally and slows down when the
server says so (429, Retry-After, X-RateLimit-*).
"""

import logging
import threading
import time
from typing import Any

import requests


class RateLimiter:
    """
    Token bucket rate limiter for controlling API request rates.

    Uses a token bucket algorithm where:
    - Tokens are added at a steady rate (requests_per_second)
    - Each request consumes one token
    - If no tokens are available, the request waits
    - Bucket has a maximum capacity (burst_size) to allow short bursts

    Thread-safe: the batch scheduler calls the client from worker threads.
    """

    # Pause when the server-side budget drops to this many requests
    LOW_REMAINING_THRESHOLD = 5

    def __init__(
        self,
        requests_per_second: float = 10.0,
        burst_size: int = 20,
        name: str = "RateLimiter",
    ):
        """
        Initialize the rate limiter.

        Args:
            requests_per_second: Maximum sustained request rate
            burst_size: Maximum tokens in bucket (allows short bursts)
            name: Logger name, usually the owning client
        """
        self.requests_per_second = requests_per_second
        self.burst_size = max(1, burst_size)

        # Token bucket state
        self._tokens = float(self.burst_size)
        self._last_update = time.monotonic()
        self._lock = threading.Lock()

        # Server-reported budget
        self._rate_limit_remaining: int | None = None
        self._rate_limit_reset: float | None = None
        self._blocked_until: float | None = None

        # Statistics
        self._total_requests = 0
        self._total_wait_time = 0.0

        self.logger = logging.getLogger(name)

    def acquire(self, timeout: float | None = None) -> bool:
        """
        Acquire a token, waiting if necessary.

        Args:
            timeout: Maximum time to wait in seconds. None means wait forever.

        Returns:
            True if token was acquired, False if timeout was reached.
        """
        start_time = time.monotonic()

        while True:
            with self._lock:
                self._refill_tokens()

                server_wait = self._server_wait_time()
                if server_wait <= 0 and self._tokens >= 1.0:
                    self._tokens -= 1.0
                    self._total_requests += 1
                    return True

                wait_time = max(server_wait, (1.0 - self._tokens) / self.requests_per_second)

            if timeout is not None:
                elapsed = time.monotonic() - start_time
                if elapsed >= timeout:
                    return False
                wait_time = min(wait_time, timeout - elapsed)

            if wait_time > 0.01:
                self.logger.debug(f"Rate limit: waiting {wait_time:.3f}s for token")

            with self._lock:
                self._total_wait_time += wait_time
            time.sleep(wait_time)

    def _refill_tokens(self) -> None:
        """Refill tokens based on elapsed time. Must be called with lock held."""
        now = time.monotonic()
        elapsed = now - self._last_update
        self._last_update = now
        self._tokens = min(float(self.burst_size), self._tokens + elapsed * self.requests_per_second)

    def _server_wait_time(self) -> float:
        """Seconds the server asked us to hold off. Must be called with lock held."""
        if self._blocked_until is None:
            return 0.0
        remaining = self._blocked_until - time.monotonic()
        if remaining <= 0:
            self._blocked_until = None
            return 0.0
        return remaining

    def _should_wait_for_server_limit(self) -> bool:
        """Check whether the server-reported budget is nearly exhausted."""
        return (
            self._rate_limit_remaining is not None
            and self._rate_limit_remaining <= self.LOW_REMAINING_THRESHOLD
        )

    @property
    def available_tokens(self) -> float:
        """Get the current number of available tokens."""
        with self._lock:
            self._refill_tokens()
            return self._tokens

    @property
    def stats(self) -> dict[str, Any]:
        """Get rate limiter statistics."""
        with self._lock:
            return {
                "total_requests": self._total_requests,
                "total_wait_time": self._total_wait_time,
                "available_tokens": self._tokens,
                "requests_per_second": self.requests_per_second,
                "burst_size": self.burst_size,
                "rate_limit_remaining": self._rate_limit_remaining,
            }

    def update_from_response(self, response: requests.Response) -> None:
        """
        Adjust pacing from response headers.

        - X-RateLimit-Remaining / X-RateLimit-Reset (GitHub, Azure DevOps)
        - Retry-After (both, on 429 and sometimes on 503)
        - 429 halves the sustained rate
        """
        headers = response.headers or {}

        remaining = headers.get("X-RateLimit-Remaining")
        reset = headers.get("X-RateLimit-Reset")
        retry_after = headers.get("Retry-After")

        with self._lock:
            if remaining is not None:
                try:
                    self._rate_limit_remaining = int(remaining)
                except ValueError:
                    pass
            if reset is not None:
                try:
                    self._rate_limit_reset = float(reset)
                except ValueError:
                    pass

            if self._should_wait_for_server_limit() and self._rate_limit_reset is not None:
                wait = max(0.0, self._rate_limit_reset - time.time())
                self.logger.warning(
                    f"Rate limit nearly exhausted: {self._rate_limit_remaining} requests "
                    f"remaining, pausing {wait:.0f}s"
                )
                self._blocked_until = time.monotonic() + wait

            if retry_after is not None:
                try:
                    self._blocked_until = time.monotonic() + max(0.0, float(retry_after))
                except ValueError:
                    pass

            if response.status_code == 429:
                old_rate = self.requests_per_second
                self.requests_per_second = max(0.5, self.requests_per_second * 0.5)
                self.logger.warning(
                    f"Rate limited by server, reducing rate from "
                    f"{old_rate:.1f} to {self.requests_per_second:.1f} req/s"
                )

    def reset(self) -> None:
        """Reset the rate limiter to initial state."""
        with self._lock:
            self._tokens = float(self.burst_size)
            self._last_update = time.monotonic()
            self._rate_limit_remaining = None
            self._rate_limit_reset = None
            self._blocked_until = None
            self._total_requests = 0
            self._total_wait_time = 0.0
