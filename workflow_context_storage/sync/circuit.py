"""Circuit breaker for remote backend calls.

When the remote store keeps failing, the coordinator stops waiting on it for
every request and goes straight to the local fallback until a trial call succeeds.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"  # one trial call in flight


class CircuitBreaker:
    """Fail fast on a remote backend that keeps failing.

    After ``failure_threshold`` consecutive failures the circuit opens and
    remote calls are refused for ``reset_timeout`` seconds. The first call
    after that is let through as a trial call; its outcome closes or re-opens the
    circuit. A trial call that never reports back (e.g. it was cancelled) is
    replaced by a new one after another ``reset_timeout``.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._monotonic = monotonic

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._trial_started_at: float | None = None
        self._trips = 0
        self._last_error: str | None = None

    def _reset_elapsed(self, since: float) -> bool:
        return self._monotonic() - since >= self.reset_timeout

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._reset_elapsed(self._opened_at):
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def allow_request(self) -> bool:
        """Whether a remote call may go ahead now.

        In the half-open state this claims the trial slot, so only the first
        caller gets ``True``.
        """
        if self._state == CircuitState.CLOSED:
            return True
        if self._state == CircuitState.OPEN:
            if not self._reset_elapsed(self._opened_at):
                return False
            logger.info("Remote circuit half-open, letting one trial call through")
            self._state = CircuitState.HALF_OPEN
            self._trial_started_at = self._monotonic()
            return True
        # HALF_OPEN
        if self._trial_started_at is None or self._reset_elapsed(self._trial_started_at):
            self._trial_started_at = self._monotonic()
            return True
        return False

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Remote circuit closed, backend recovered")
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._trial_started_at = None
        self._last_error = None

    def record_failure(self, error: str | None = None) -> None:
        self._consecutive_failures += 1
        self._last_error = error
        self._trial_started_at = None
        trial_failed = self._state == CircuitState.HALF_OPEN
        if trial_failed or self._consecutive_failures >= self.failure_threshold:
            if self._state == CircuitState.CLOSED:
                self._trips += 1
                logger.warning(
                    f"Remote circuit open after {self._consecutive_failures} consecutive "
                    f"failures, next trial call in {self.reset_timeout}s",
                    extra={"last_error": error},
                )
            self._state = CircuitState.OPEN
            self._opened_at = self._monotonic()

    def stats(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self._consecutive_failures,
            "total_trips": self._trips,
            "last_error": self._last_error,
        }
