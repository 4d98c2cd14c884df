"""Bulk media sync from local files to a hosted product catalog."""

__version__ = "0.1.0"

from mediasync.models import (
    BatchReport,
    BatchResult,
    EntityRef,
    LocalFile,
    MediaAsset,
    MediaClass,
    ResolutionPolicy,
    SlotLabel,
    StatusTag,
    UploadConfig,
)

__all__ = [
    "BatchReport",
    "BatchResult",
    "EntityRef",
    "LocalFile",
    "MediaAsset",
    "MediaClass",
    "ResolutionPolicy",
    "SlotLabel",
    "StatusTag",
    "UploadConfig",
    "__version__",
]
