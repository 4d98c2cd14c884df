"""Error kinds raised by the media sync pipeline.

Every error is local to one file (or one entity's reorder step); the
orchestrator maps them to status tags and never lets them abort a batch.
"""

from __future__ import annotations

from collections.abc import Iterable


class MediaSyncError(Exception):
    """Base class carrying the remote (or local) messages behind a failure."""

    def __init__(self, message: str, messages: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.messages: tuple[str, ...] = tuple(messages)


class NoMatch(MediaSyncError):
    """No lookup strategy resolved the filename key to an entity."""


class StagedUploadError(MediaSyncError):
    """The remote service rejected creation of a staged upload target."""


class TransferError(MediaSyncError):
    """Byte transfer to a staged target returned a non-2xx status."""


class RegistrationError(MediaSyncError):
    """The remote service rejected creating a managed asset from staged bytes."""


class ReadinessTimeout(MediaSyncError):
    """An asset did not reach a terminal state in time and the run aborts on timeout."""


class AttachError(MediaSyncError):
    """Every attach path in the fallback chain failed."""


class ReorderError(MediaSyncError):
    """The remote service rejected the media reorder for an entity."""
