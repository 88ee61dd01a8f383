"""Exponential backoff with jitter and retryability classification."""

from __future__ import annotations

import asyncio
import random
import re
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import TypeVar

from postbridge.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from postbridge.logging import get_logger
from postbridge.queue.models import RetryPolicy

log = get_logger("postbridge.queue.retry")

T = TypeVar("T")

_NON_RETRYABLE_TYPES = (AuthenticationError, AuthorizationError, ValidationError, NotFoundError)
_NON_RETRYABLE_STATUS_CODES = frozenset({401, 403, 404, 422})
_NON_RETRYABLE_MESSAGE_RE = re.compile(r"\b(401|403|404|422)\b")


def is_retryable(error: BaseException) -> bool:
    """Return ``False`` for errors that another attempt cannot fix.

    Typed auth, validation and not-found errors are final, as is anything
    carrying one of the status codes 401, 403, 404 or 422. Untyped errors
    are judged by whether their message mentions one of those codes.
    Everything else (timeouts, connection failures, 5xx) is retryable.
    """
    if isinstance(error, _NON_RETRYABLE_TYPES):
        return False
    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        return status_code not in _NON_RETRYABLE_STATUS_CODES
    return _NON_RETRYABLE_MESSAGE_RE.search(str(error)) is None


class RetryStrategy:
    """Computes retry delays and eligibility for a :class:`RetryPolicy`.

    Args:
        policy: Backoff parameters.
        rng: Jitter source; inject a seeded ``random.Random`` in tests.
    """

    def __init__(self, policy: RetryPolicy | None = None, rng: random.Random | None = None) -> None:
        self._policy = policy or RetryPolicy()
        self._rng = rng or random.Random()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def base_delay_for(self, attempt: int) -> float:
        """Pre-jitter delay for *attempt*, capped at ``max_delay``."""
        policy = self._policy
        try:
            delay = policy.base_delay * policy.backoff_multiplier**attempt
        except OverflowError:
            return policy.max_delay
        return min(delay, policy.max_delay)

    def get_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number *attempt*.

        Uniform jitter of ``jitter_percent`` width is centred on the capped
        delay; the result is clamped to ``[0, max_delay]``.
        """
        capped = self.base_delay_for(attempt)
        spread = capped * self._policy.jitter_percent / 2
        jitter = self._rng.uniform(-spread, spread) if spread else 0.0
        return min(max(capped + jitter, 0.0), self._policy.max_delay)

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        """Whether a failure on *attempt* may be retried."""
        if attempt >= self._policy.max_retries:
            return False
        return is_retryable(error)

    def next_attempt_time(self, attempt: int) -> datetime:
        """Absolute time of retry number *attempt*."""
        return datetime.now(tz=UTC) + timedelta(seconds=self.get_delay(attempt))

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        on_retry: Callable[[int, BaseException, float], None] | None = None,
    ) -> T:
        """Run *fn* until it succeeds, retrying per the policy.

        Args:
            fn: Zero-argument coroutine factory.
            on_retry: Called with ``(attempt, error, delay)`` before each
                sleep.

        Raises:
            The last error once retries are exhausted or the error is final.
        """
        attempt = 0
        while True:
            try:
                return await fn()
            except Exception as exc:
                if not self.should_retry(attempt, exc):
                    raise
                delay = self.get_delay(attempt)
                attempt += 1
                log.debug("retry_scheduled", attempt=attempt, delay=round(delay, 3), error=str(exc))
                if on_retry is not None:
                    on_retry(attempt, exc, delay)
                await asyncio.sleep(delay)
