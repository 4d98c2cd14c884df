"""Upload pipeline for syncing local media into a Shopify catalog.

Public API
----------
.. autoclass:: ShopifyAdminClient
.. autoclass:: IdentifierResolver
.. autoclass:: StagedTransferClient
.. autoclass:: ReadinessPoller
.. autoclass:: MediaReconciler
.. autoclass:: BatchOrchestrator
.. autoclass:: RollingWindowCircuitBreaker
.. autoclass:: AdaptiveRateLimiter
.. autoclass:: RateLimiterConfig
.. autoclass:: UploadProgressTracker
"""

from mediasync.upload.circuit_breaker import CircuitState, RollingWindowCircuitBreaker
from mediasync.upload.client import (
    PermanentError,
    RateLimitError,
    ShopifyAdminClient,
    TransientError,
)
from mediasync.upload.exceptions import (
    AttachError,
    MediaSyncError,
    NoMatch,
    ReadinessTimeout,
    RegistrationError,
    ReorderError,
    StagedUploadError,
    TransferError,
)
from mediasync.upload.orchestrator import BatchOrchestrator
from mediasync.upload.poller import ReadinessPoller
from mediasync.upload.progress import UploadProgressTracker
from mediasync.upload.rate_limiter import AdaptiveRateLimiter, RateLimiterConfig
from mediasync.upload.reconciler import MediaReconciler, build_alt_label, plan_media_order
from mediasync.upload.resolver import IdentifierResolver, parse_slot_label
from mediasync.upload.staged import StagedTransferClient

__all__ = [
    "AdaptiveRateLimiter",
    "AttachError",
    "BatchOrchestrator",
    "CircuitState",
    "IdentifierResolver",
    "MediaReconciler",
    "MediaSyncError",
    "NoMatch",
    "PermanentError",
    "RateLimitError",
    "RateLimiterConfig",
    "ReadinessPoller",
    "ReadinessTimeout",
    "RegistrationError",
    "ReorderError",
    "RollingWindowCircuitBreaker",
    "ShopifyAdminClient",
    "StagedTransferClient",
    "StagedUploadError",
    "TransferError",
    "TransientError",
    "UploadProgressTracker",
    "build_alt_label",
    "parse_slot_label",
    "plan_media_order",
]
