"""Plan-tier configuration and adaptive throttling for the Admin GraphQL API.

Shopify meters GraphQL calls with a leaky bucket of query-cost points: every
response carries ``extensions.cost.throttleStatus`` with the points currently
available and the restore rate. The limiter spaces calls by tier, waits for
the bucket to refill when it runs low, and stretches the spacing while the
circuit breaker is open.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from mediasync.upload.circuit_breaker import CircuitState, RollingWindowCircuitBreaker

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tier definitions
# ---------------------------------------------------------------------------

# Points of query cost restored per second.
RATE_LIMIT_TIERS: dict[str, dict[str, int]] = {
    "standard": {"restore_rate": 100},
    "advanced": {"restore_rate": 200},
    "plus": {"restore_rate": 1000},
}

# Rough cost of the queries and mutations this package sends.
ESTIMATED_QUERY_COST = 10


@dataclass
class RateLimiterConfig:
    """Rate limiter settings derived from a named plan tier.

    Attributes:
        tier: One of ``standard``, ``advanced``, ``plus``.
        restore_rate: Cost points restored per second.
        low_watermark: Wait for a refill when fewer points than this remain.
    """

    tier: str = "standard"
    low_watermark: int = 100
    restore_rate: int = field(init=False)

    def __post_init__(self) -> None:
        tier_data = RATE_LIMIT_TIERS.get(self.tier)
        if tier_data is None:
            raise ValueError(
                f"Unknown rate limit tier {self.tier!r}. "
                f"Choose from: {', '.join(RATE_LIMIT_TIERS)}"
            )
        self.restore_rate = tier_data["restore_rate"]

    @property
    def min_request_interval(self) -> float:
        """Seconds of restore time one typical call consumes."""
        return ESTIMATED_QUERY_COST / self.restore_rate


# ---------------------------------------------------------------------------
# Adaptive rate limiter
# ---------------------------------------------------------------------------


class AdaptiveRateLimiter:
    """Throttles catalog calls from observed bucket state and breaker state.

    * **CLOSED** -- no spacing unless the observed bucket is below the low
      watermark, in which case it waits for the deficit to restore.
    * **HALF_OPEN** -- at least 1.5x ``min_request_interval``.
    * **OPEN** -- at least 3x ``min_request_interval``.
    """

    def __init__(
        self,
        config: RateLimiterConfig,
        circuit_breaker: RollingWindowCircuitBreaker,
    ) -> None:
        self._config = config
        self._circuit_breaker = circuit_breaker
        self._available: float | None = None
        self._restore_rate: float = float(config.restore_rate)

    def next_delay(self) -> float:
        """Seconds to wait before the next call."""
        deficit_delay = 0.0
        if self._available is not None and self._available < self._config.low_watermark:
            deficit_delay = (self._config.low_watermark - self._available) / self._restore_rate

        state = self._circuit_breaker.state
        base = self._config.min_request_interval
        if state == CircuitState.OPEN:
            return max(deficit_delay, base * 3.0)
        if state == CircuitState.HALF_OPEN:
            return max(deficit_delay, base * 1.5)
        return deficit_delay

    async def wait_if_needed(self) -> None:
        """Sleep for the delay given the bucket and circuit state."""
        delay = self.next_delay()
        if delay > 0:
            logger.debug(
                "Rate limiter: sleeping %.2fs (state=%s, available=%s)",
                delay,
                self._circuit_breaker.state.value,
                self._available,
            )
            await asyncio.sleep(delay)

    def observe_cost(self, extensions: dict[str, Any] | None) -> None:
        """Record ``extensions.cost.throttleStatus`` from a GraphQL response."""
        if not extensions:
            return
        throttle = (extensions.get("cost") or {}).get("throttleStatus") or {}
        available = throttle.get("currentlyAvailable")
        if available is None:
            return
        try:
            self._available = float(available)
            restore = throttle.get("restoreRate")
            if restore:
                self._restore_rate = float(restore)
        except (TypeError, ValueError):
            return
        logger.debug("Observed query-cost bucket: %.0f available", self._available)

    @property
    def observed_available(self) -> float | None:
        """Last observed available cost points, or ``None``."""
        return self._available
