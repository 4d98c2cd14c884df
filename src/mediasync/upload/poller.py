"""Readiness polling for freshly created media assets."""

from __future__ import annotations

import logging

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    retry_if_result,
    stop_after_delay,
    wait_fixed,
)

from mediasync.models import MediaStatus, Readiness
from mediasync.upload.client import RateLimitError, ShopifyAdminClient, TransientError

logger = logging.getLogger(__name__)


class ReadinessPoller:
    """Polls an asset's processing status until it is terminal or time runs out.

    READY and FAILED come from the remote service. TIMEOUT is a local
    decision only; nothing is cancelled remotely. Transient status-query
    failures are retried inside the same deadline.
    """

    def __init__(self, client: ShopifyAdminClient) -> None:
        self._client = client

    async def wait(self, asset_id: str, interval: float, timeout: float) -> Readiness:
        status = MediaStatus.PENDING
        try:
            async for attempt in AsyncRetrying(
                wait=wait_fixed(interval),
                stop=stop_after_delay(timeout),
                retry=(
                    retry_if_result(lambda s: s is MediaStatus.PENDING)
                    | retry_if_exception_type(
                        (TransientError, RateLimitError, httpx.TransportError)
                    )
                ),
            ):
                with attempt:
                    status = await self._client.get_status(asset_id)
                if not attempt.retry_state.outcome.failed:
                    attempt.retry_state.set_result(status)
        except RetryError:
            logger.info("Asset %s not ready after %.1fs", asset_id, timeout)
            return Readiness.TIMEOUT

        if status is MediaStatus.READY:
            return Readiness.READY
        logger.warning("Asset %s processing FAILED", asset_id)
        return Readiness.FAILED
