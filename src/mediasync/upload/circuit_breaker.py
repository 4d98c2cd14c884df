"""Rolling-window circuit breaker for catalog API throttling.

The Admin API throttles in two ways: an HTTP 429 from the edge and a
``THROTTLED`` error inside an otherwise successful GraphQL response when the
query-cost bucket runs dry. Both count as a throttle event here. The breaker
tracks the throttle rate over a sliding window of calls and moves through
CLOSED -> OPEN -> HALF_OPEN; the rate limiter reads its state to stretch the
delay between calls.
"""

from __future__ import annotations

import collections
import logging
import time
from enum import Enum

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker state machine states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class RollingWindowCircuitBreaker:
    """Circuit breaker over the last *window_size* catalog calls.

    Trips to OPEN when the throttle rate in the window exceeds
    *error_threshold* (once the window holds *min_calls* calls) or *consecutive_threshold* throttles arrive in a row.
    After *cooldown_seconds* it reports HALF_OPEN; the next success closes
    it, another throttle re-opens it.
    """

    def __init__(
        self,
        window_size: int = 50,
        error_threshold: float = 0.1,
        consecutive_threshold: int = 3,
        cooldown_seconds: float = 30,
        min_calls: int = 10,
    ) -> None:
        self._window: collections.deque[bool] = collections.deque(maxlen=window_size)
        self._error_threshold = error_threshold
        self._min_calls = min_calls
        self._consecutive_threshold = consecutive_threshold
        self._cooldown_seconds = cooldown_seconds

        self._state = CircuitState.CLOSED
        self._opened_at: float | None = None
        self._consecutive_throttles = 0

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_success(self) -> None:
        """Record a call that was not throttled."""
        self._window.append(True)
        self._consecutive_throttles = 0

        if self._state == CircuitState.HALF_OPEN:
            logger.info("Circuit breaker HALF_OPEN -> CLOSED after successful probe")
            self._state = CircuitState.CLOSED
            self._window.clear()

    def record_throttled(self) -> None:
        """Record a 429 response or a GraphQL ``THROTTLED`` error."""
        self._window.append(False)
        self._consecutive_throttles += 1

        if self._state == CircuitState.HALF_OPEN or self._should_trip():
            self._trip()

    def record_error(self) -> None:
        """Record a non-throttle failure. Observed only; never trips the breaker."""
        self._consecutive_throttles = 0
        logger.debug("Circuit breaker recorded non-throttle error (state=%s)", self._state)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        """Current state, with the automatic OPEN -> HALF_OPEN transition applied."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            elapsed = time.monotonic() - self._opened_at
            if elapsed >= self._cooldown_seconds:
                logger.info("Circuit breaker OPEN -> HALF_OPEN after %.1fs cooldown", elapsed)
                self._state = CircuitState.HALF_OPEN
        return self._state

    @property
    def throttle_rate(self) -> float:
        """Fraction of throttled calls in the current window."""
        if not self._window:
            return 0.0
        return self._window.count(False) / len(self._window)

    def _should_trip(self) -> bool:
        # The rate is meaningless until the window holds enough calls
        rate_exceeded = (
            len(self._window) >= self._min_calls
            and self.throttle_rate > self._error_threshold
        )
        return rate_exceeded or self._consecutive_throttles >= self._consecutive_threshold

    def _trip(self) -> None:
        prev = self._state
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        logger.warning(
            "Circuit breaker %s -> OPEN (throttle_rate=%.2f, consecutive=%d)",
            prev.value,
            self.throttle_rate,
            self._consecutive_throttles,
        )
