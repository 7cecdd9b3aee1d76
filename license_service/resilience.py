"""
resilience.py - Retry and Circuit Breaking for License Provider Calls

The orchestrator treats every provider call as a single attempt. Transient
failures are absorbed here, inside the provider client:

    • retry_async: exponential backoff with jitter for transport errors and
      transient HTTP statuses (408, 429, 5xx)
    • CircuitBreaker: fails fast after repeated transient failures and lets a
      trial call through once the break duration has elapsed
"""

import asyncio
import functools
import logging
import random
import time

import httpx

from .exceptions import ExternalApiError

log = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408, 429})


def is_transient_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in TRANSIENT_STATUS_CODES


def retry_async(retries: int = 3, base_delay: float = 0.2, retry_on=(httpx.TransportError,)):
    """
    Decorator retrying a coroutine function on transient failures.

    An attempt counts as failed when it raises one of `retry_on`, or when it
    returns an `httpx.Response` with a transient status. The last response is
    returned as-is once retries are exhausted; the last exception is re-raised.
    Cancellation is never retried.

    Args:
        retries (int): Number of retries after the first attempt.
        base_delay (float): Delay before the first retry in seconds, doubled per retry.
        retry_on (tuple): Exception types considered transient.
    """
    def deco(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    result = await fn(*args, **kwargs)
                except retry_on as e:
                    attempt += 1
                    if attempt > retries:
                        raise
                    reason = f"{type(e).__name__}: {e}"
                else:
                    if not (isinstance(result, httpx.Response) and is_transient_status(result.status_code)):
                        return result
                    attempt += 1
                    if attempt > retries:
                        return result
                    reason = f"HTTP {result.status_code}"
                delay = base_delay * (2 ** (attempt - 1)) + random.uniform(0, 0.05)
                log.warning(f"HTTP retry attempt {attempt} after {delay * 1000:.0f}ms due to: {reason}")
                await asyncio.sleep(delay)
        return wrapper
    return deco


class CircuitBreaker:
    """
    Minimal circuit breaker shared by all calls of one provider client.

    States:
        closed    - calls pass, consecutive failures are counted
        open      - calls fail immediately with ExternalApiError
        half-open - after `reset_seconds` one trial call is allowed while the
                    others keep failing fast; success closes the circuit,
                    failure opens it again
    """

    def __init__(self, threshold: int = 5, reset_seconds: float = 30, clock=time.monotonic):
        self.threshold = threshold
        self.reset_seconds = reset_seconds
        self._clock = clock
        self._failures = 0
        self._opened_at = None
        self._trial_in_flight = False

    @property
    def is_open(self) -> bool:
        if self._opened_at is None:
            return False
        return self._clock() - self._opened_at < self.reset_seconds

    def before_call(self):
        if self.is_open:
            remaining = self.reset_seconds - (self._clock() - self._opened_at)
            raise ExternalApiError(f"Circuit breaker open; provider calls suspended for {remaining:.1f}s")
        if self._opened_at is not None:
            if self._trial_in_flight:
                raise ExternalApiError("Circuit breaker half-open; waiting for the trial call")
            self._trial_in_flight = True

    def release_trial(self):
        """Gives up the half-open trial without judging the provider, e.g. on cancellation."""
        self._trial_in_flight = False

    def record_success(self):
        if self._opened_at is not None:
            log.info("Circuit breaker reset - requests will be allowed")
        self._failures = 0
        self._opened_at = None
        self._trial_in_flight = False

    def record_failure(self, reason: str = ""):
        self._failures += 1
        half_open = self._opened_at is not None
        self._trial_in_flight = False
        if half_open or self._failures >= self.threshold:
            self._opened_at = self._clock()
            log.warning(f"Circuit breaker opened for {self.reset_seconds * 1000:.0f}ms due to: {reason}")
