"""
Run deadline and bounded retry for transient collaborator failures.
"""

import random
import time
import logging

from epistles.core.error_codes import JobError, RunDeadlineExceeded

logger = logging.getLogger(__name__)


class Deadline:
    """Wall-clock budget for one run. Caps every blocking call's timeout."""

    def __init__(self, budget_sec: float, clock=time.monotonic):
        self._clock = clock
        self.budget_sec = budget_sec
        self._expires_at = clock() + budget_sec

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, stage: str):
        if self.expired:
            raise RunDeadlineExceeded(stage)

    def cap(self, timeout: float, stage: str) -> float:
        """Shrink `timeout` to what is left of the run; raise if nothing is left."""
        self.check(stage)
        return min(timeout, self.remaining())


def call_with_retries(func, *, max_attempts: int = 3, backoff_sec: float = 5.0,
                      deadline: Deadline | None = None, stage: str = "",
                      sleep=time.sleep):
    """
    Call `func()` and retry on errors flagged retryable, with exponential
    backoff (+/- 10% jitter). Non-retryable errors propagate immediately.
    """
    attempt = 1
    while True:
        if deadline is not None:
            deadline.check(stage)
        try:
            return func()
        except JobError as e:
            if not e.retryable or attempt >= max_attempts:
                raise
            delay = backoff_sec * (2 ** (attempt - 1))
            delay *= 1 + random.uniform(-0.1, 0.1)
            if deadline is not None and delay >= deadline.remaining():
                raise
            logger.warning("%s failed (%s), retrying in %.1fs (attempt %d/%d)",
                           stage or "Call", e.code, delay, attempt + 1, max_attempts)
            sleep(delay)
            attempt += 1
