"""
Rate limiting and retry support for CloudWatch Logs calls.

All provider calls made by one session share a single RateLimiter. When any
call is throttled the limiter is penalised, so concurrent fetchers across
streams back off together instead of each retrying on its own.
"""

import random
import threading
import time
import logging
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .errors import RateLimited, RetryBudgetExceeded, TransientError


T = TypeVar('T')


class Cancelled(Exception):
    """Raised when a cancellation signal is observed while waiting."""
    pass


class RateLimiter:
    """
    Token bucket rate limiter shared by every provider call in a session.
    """

    def __init__(self, requests_per_second: float = 5.0, burst: int = 5,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize the rate limiter.

        Args:
            requests_per_second: Sustained request rate
            burst: Maximum number of tokens that can accumulate
            clock: Monotonic clock, replaceable in tests
        """
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.rate = float(requests_per_second)
        self.capacity = max(1, int(burst))
        self._clock = clock
        self._tokens = float(self.capacity)
        self._last_refill = clock()
        self._blocked_until = 0.0
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
            self._last_refill = now

    def reserve(self) -> float:
        """
        Take a token and return how long the caller must wait before using it.

        Returns:
            Seconds to wait (0 when a token is immediately available)
        """
        with self._lock:
            now = self._clock()
            self._refill(now)
            self._tokens -= 1.0
            wait = 0.0
            if self._tokens < 0:
                wait = -self._tokens / self.rate
            return max(wait, self._blocked_until - now)

    def acquire(self, cancel_event: Optional[threading.Event] = None) -> None:
        """
        Block until a request may be made.

        Args:
            cancel_event: Optional event; if set while waiting, Cancelled is raised
        """
        wait = self.reserve()
        if wait <= 0:
            return
        self.logger.debug(f"Rate limiter delaying request by {wait:.2f}s")
        if cancel_event is not None:
            if cancel_event.wait(wait):
                raise Cancelled("Cancelled while waiting for rate limiter")
        else:
            time.sleep(wait)

    def penalize(self, delay: float) -> None:
        """
        Hold back every caller for ``delay`` seconds after a throttling signal.
        """
        with self._lock:
            until = self._clock() + delay
            if until > self._blocked_until:
                self._blocked_until = until
                self.logger.info(f"Provider throttled requests; backing off {delay:.2f}s")

    @property
    def blocked_for(self) -> float:
        with self._lock:
            return max(0.0, self._blocked_until - self._clock())


@dataclass
class BackoffPolicy:
    """Bounded exponential backoff with jitter."""
    base_delay: float = 0.5
    max_delay: float = 30.0
    max_attempts: int = 5

    def delay(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """
        Delay before retry number ``attempt`` (0-based).

        Uses "equal jitter": half the capped exponential delay is fixed, the
        other half is random.
        """
        capped = min(self.max_delay, self.base_delay * (2 ** attempt))
        return capped / 2 + rng() * capped / 2


def call_with_retry(func: Callable[[], T], limiter: Optional[RateLimiter] = None,
                    policy: Optional[BackoffPolicy] = None,
                    cancel_event: Optional[threading.Event] = None,
                    sleep: Optional[Callable[[float], None]] = None) -> T:
    """
    Call ``func`` and retry transient failures with backoff.

    ``func`` is expected to acquire the limiter itself for each provider call
    (EventFetcher does). Throttling penalises the shared limiter so other
    callers slow down as well. Non-transient errors propagate immediately.

    Args:
        func: Zero-argument callable performing one provider request
        limiter: Shared session rate limiter
        policy: Backoff policy
        cancel_event: Cancellation signal checked before each attempt
        sleep: Sleep function, replaceable in tests

    Returns:
        The value returned by ``func``

    Raises:
        RetryBudgetExceeded: When the last allowed attempt still fails
        Cancelled: When cancellation is requested between attempts
    """
    policy = policy or BackoffPolicy()
    logger = logging.getLogger(__name__)
    attempt = 0

    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise Cancelled("Cancelled before request")
        try:
            return func()
        except TransientError as e:
            attempt += 1
            if attempt >= policy.max_attempts:
                raise RetryBudgetExceeded(
                    f"Giving up after {attempt} attempts: {e}", e.stream_id) from e

            delay = policy.delay(attempt - 1)
            logger.debug(f"Transient error (attempt {attempt}/{policy.max_attempts}), "
                         f"retrying in {delay:.2f}s: {e}")

            if isinstance(e, RateLimited) and limiter is not None:
                # The next acquire() waits out the penalty.
                limiter.penalize(delay)
            elif sleep is not None:
                sleep(delay)
            elif cancel_event is not None:
                if cancel_event.wait(delay):
                    raise Cancelled("Cancelled during backoff")
            else:
                time.sleep(delay)
