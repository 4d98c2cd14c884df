"""Data models and enums for the catalog media sync pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

from mediasync.constants import (
    CUSTOM_ID_KEY,
    CUSTOM_ID_NAMESPACE,
    DEFAULT_API_VERSION,
)


class MediaClass(str, Enum):
    """Kind of media asset, matching the remote ``mediaContentType``."""

    IMAGE = "IMAGE"
    VIDEO = "VIDEO"


class MediaStatus(str, Enum):
    """Remote processing status of a media asset."""

    PENDING = "PENDING"
    READY = "READY"
    FAILED = "FAILED"

    @classmethod
    def from_remote(cls, value: str | None) -> MediaStatus:
        """Map a remote ``status`` / ``fileStatus`` string onto the three local states.

        ``UPLOADED`` and ``PROCESSING`` (and anything unknown) are PENDING.
        """
        if value == "READY":
            return cls.READY
        if value == "FAILED":
            return cls.FAILED
        return cls.PENDING


class Readiness(str, Enum):
    """Outcome of a readiness poll. TIMEOUT is a local decision, not a remote state."""

    READY = "ready"
    FAILED = "failed"
    TIMEOUT = "timeout"


class ResolutionPolicy(str, Enum):
    """Which lookup strategies resolve a filename key to an entity."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    AUTO = "auto"

    @classmethod
    def parse(cls, value: str | ResolutionPolicy) -> ResolutionPolicy:
        """Accept the policy names plus the ``custom-id`` / ``sku`` aliases."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        aliases = {"custom-id": cls.PRIMARY, "sku": cls.SECONDARY}
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(
                f"Unknown resolution policy {value!r}. "
                f"Choose from: primary, secondary, auto (or custom-id, sku)"
            ) from None


class StatusTag(str, Enum):
    """Per-file outcome recorded on a :class:`BatchResult`."""

    OK = "ok"
    REPLACED = "replaced"
    MATCHED = "matched"
    NO_MATCH = "no_match"
    STAGED_UPLOAD_ERROR = "staged_upload_error"
    TRANSFER_FAILED = "transfer_failed"
    REGISTRATION_FAILED = "registration_failed"
    TIMEOUT = "timeout"
    ATTACH_FAILED = "attach_failed"
    ERROR = "error"
    SKIPPED = "skipped"

    @property
    def succeeded(self) -> bool:
        return self in (StatusTag.OK, StatusTag.REPLACED, StatusTag.MATCHED)


class VariantLink(str, Enum):
    """What happened to the variant-level link of a freshly attached asset."""

    NOT_APPLICABLE = "not_applicable"
    LINKED = "linked"
    LINKED_VIA_APPEND = "linked_via_append"
    SKIPPED_NOT_READY = "skipped_not_ready"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class LocalFile:
    """A local media file queued for upload."""

    path: Path
    basename: str
    size: int
    mime_type: str

    @property
    def media_class(self) -> MediaClass:
        if self.mime_type.startswith("video/"):
            return MediaClass.VIDEO
        return MediaClass.IMAGE


@dataclass(frozen=True, slots=True)
class SlotLabel:
    """Catalog key and positional slot parsed from a filename (index 0 = featured)."""

    key: str
    index: int = 0

    @property
    def is_featured(self) -> bool:
        return self.index == 0

    @property
    def token(self) -> str:
        """The filename form of the label: ``key`` or ``key_<index>``."""
        return self.key if self.index == 0 else f"{self.key}_{self.index}"


@dataclass(frozen=True, slots=True)
class EntityRef:
    """A remote product, optionally paired with one of its variants."""

    entity_id: str
    entity_title: str
    variant_id: str | None = None
    variant_title: str | None = None

    @property
    def is_variant_scoped(self) -> bool:
        return self.variant_id is not None


@dataclass(frozen=True, slots=True)
class StagedTarget:
    """A one-time upload location. Never reused or persisted."""

    upload_url: str
    resource_url: str
    auth_parameters: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True, slots=True)
class MediaAsset:
    """Read-only snapshot of a remote media asset."""

    id: str
    media_class: MediaClass
    alt_label: str | None = None
    source_basename: str | None = None
    status: MediaStatus = MediaStatus.PENDING


@dataclass(frozen=True)
class BatchResult:
    """Outcome for a single input file. Never mutated after creation."""

    filename: str
    status: StatusTag
    entity_id: str | None = None
    detail: str | None = None
    errors: tuple[str, ...] = ()
    media_id: str | None = None
    variant_link: VariantLink = VariantLink.NOT_APPLICABLE
    attempts: int = 1

    def to_dict(self) -> dict[str, object]:
        """Convert to a dictionary with enum values as strings."""
        return {
            "filename": self.filename,
            "status": self.status.value,
            "entity_id": self.entity_id,
            "detail": self.detail,
            "errors": list(self.errors),
            "media_id": self.media_id,
            "variant_link": self.variant_link.value,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class ReorderResult:
    """Outcome of the batch-end reorder for one entity."""

    entity_id: str
    status: str  # "reordered", "unchanged" or "failed"
    moves: int = 0
    errors: tuple[str, ...] = ()


@dataclass
class BatchReport:
    """Ordered per-file results plus per-entity reorder outcomes."""

    results: list[BatchResult] = field(default_factory=list)
    reorders: list[ReorderResult] = field(default_factory=list)

    @property
    def ok(self) -> int:
        return sum(1 for r in self.results if r.status.succeeded)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status is StatusTag.SKIPPED)

    @property
    def failed(self) -> int:
        return len(self.results) - self.ok - self.skipped

    @property
    def summary(self) -> dict[str, int]:
        """Return summary counts."""
        return {
            "total": len(self.results),
            "ok": self.ok,
            "failed": self.failed,
            "skipped": self.skipped,
            "reorder_failed": sum(1 for r in self.reorders if r.status == "failed"),
        }


@dataclass(frozen=True)
class UploadConfig:
    """Immutable run configuration for the media sync pipeline.

    Controls shop targeting, identifier resolution, concurrency and retry
    limits, readiness polling, and rate limiting. Built once per run (see
    :func:`mediasync.config.load_upload_config`) and passed to every
    component constructor.
    """

    shop: str
    access_token: str | None = None
    api_version: str = DEFAULT_API_VERSION
    resolution_policy: ResolutionPolicy = ResolutionPolicy.AUTO
    custom_id_namespace: str = CUSTOM_ID_NAMESPACE
    custom_id_key: str = CUSTOM_ID_KEY
    max_concurrency: int = 3
    file_retries: int = 2
    retry_backoff_seconds: float = 1.0
    throttle_retries: int = 4
    image_poll_interval_seconds: float = 0.8
    image_poll_timeout_seconds: float = 20.0
    video_poll_interval_seconds: float = 2.5
    video_poll_timeout_seconds: float = 180.0
    register_images: bool = False
    optimistic_attach: bool = True
    dry_run: bool = False
    run_timeout_seconds: float | None = None
    request_timeout_seconds: float = 30.0
    transfer_timeout_seconds: float = 300.0
    rate_limit_tier: str = "standard"

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.file_retries < 0:
            raise ValueError("file_retries must not be negative")
        # Accept plain strings from JSON / CLI input
        if not isinstance(self.resolution_policy, ResolutionPolicy):
            object.__setattr__(
                self, "resolution_policy", ResolutionPolicy.parse(self.resolution_policy)
            )

    @property
    def graphql_url(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}/graphql.json"

    def poll_settings(self, media_class: MediaClass) -> tuple[float, float]:
        """Return ``(interval, timeout)`` seconds for polling assets of *media_class*."""
        if media_class is MediaClass.VIDEO:
            return self.video_poll_interval_seconds, self.video_poll_timeout_seconds
        return self.image_poll_interval_seconds, self.image_poll_timeout_seconds

    def with_poll_overrides(
        self, interval: float | None = None, timeout: float | None = None
    ) -> UploadConfig:
        """Return a copy with the poll interval and/or timeout overridden for both classes."""
        changes: dict[str, float] = {}
        if interval is not None:
            changes["image_poll_interval_seconds"] = interval
            changes["video_poll_interval_seconds"] = interval
        if timeout is not None:
            changes["image_poll_timeout_seconds"] = timeout
            changes["video_poll_timeout_seconds"] = timeout
        return replace(self, **changes) if changes else self
