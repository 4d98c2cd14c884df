"""Pydantic v2 models for Shopify Admin GraphQL payloads.

Used only at the client boundary: raw JSON is validated into these shapes
and immediately converted into the dataclasses of :mod:`mediasync.models`.
Separate from mediasync.models (dataclasses).
"""

from __future__ import annotations

from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, ConfigDict, Field

from mediasync.models import EntityRef, MediaAsset, MediaClass, MediaStatus, StagedTarget


class _Wire(BaseModel):
    """Base for wire models: camelCase aliases, unknown fields ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UserError(_Wire):
    """A ``userErrors`` / ``mediaUserErrors`` entry."""

    field: list[str] | None = None
    message: str
    code: str | None = None


class UrlRef(_Wire):
    url: str | None = None


class StagedUploadParameter(_Wire):
    name: str
    value: str


class StagedTargetNode(_Wire):
    url: str | None = None
    resource_url: str | None = Field(default=None, alias="resourceUrl")
    parameters: list[StagedUploadParameter] = Field(default_factory=list)

    def to_target(self) -> StagedTarget | None:
        if not self.url or not self.resource_url:
            return None
        return StagedTarget(
            upload_url=self.url,
            resource_url=self.resource_url,
            auth_parameters=tuple((p.name, p.value) for p in self.parameters),
        )


class MediaNode(_Wire):
    """A product media node or a file node (``fileCreate`` / ``fileUpdate``)."""

    id: str | None = None
    typename: str | None = Field(default=None, alias="__typename")
    alt: str | None = None
    media_content_type: str | None = Field(default=None, alias="mediaContentType")
    status: str | None = None
    file_status: str | None = Field(default=None, alias="fileStatus")
    image: UrlRef | None = None
    original_source: UrlRef | None = Field(default=None, alias="originalSource")
    filename: str | None = None

    @property
    def media_class(self) -> MediaClass | None:
        if self.media_content_type in ("IMAGE", "VIDEO"):
            return MediaClass(self.media_content_type)
        if self.typename == "MediaImage":
            return MediaClass.IMAGE
        if self.typename == "Video":
            return MediaClass.VIDEO
        return None

    @property
    def source_basename(self) -> str | None:
        if self.filename:
            return self.filename
        for ref in (self.image, self.original_source):
            if ref is not None and ref.url:
                return url_basename(ref.url)
        return None

    def to_asset(self, default_class: MediaClass | None = None) -> MediaAsset | None:
        """Convert to a :class:`MediaAsset`; ``None`` for nodes without an id or class."""
        media_class = self.media_class or default_class
        if not self.id or media_class is None:
            return None
        return MediaAsset(
            id=self.id,
            media_class=media_class,
            alt_label=self.alt,
            source_basename=self.source_basename,
            status=MediaStatus.from_remote(self.status or self.file_status),
        )


class ProductNode(_Wire):
    id: str
    title: str = ""


class VariantNode(_Wire):
    id: str
    title: str | None = None
    sku: str | None = None
    product: ProductNode

    def to_entity(self) -> EntityRef:
        return EntityRef(
            entity_id=self.product.id,
            entity_title=self.product.title,
            variant_id=self.id,
            variant_title=self.title,
        )


def url_basename(url: str) -> str:
    """Last path segment of *url* without query string, percent-decoded."""
    path = urlsplit(url).path
    return unquote(path.rsplit("/", 1)[-1])


def error_messages(raw: list[dict] | None) -> tuple[str, ...]:
    """Validate a ``userErrors`` list and return its messages verbatim."""
    return tuple(UserError.model_validate(e).message for e in raw or [])


def media_assets(
    raw: list[dict] | None, default_class: MediaClass | None = None
) -> list[MediaAsset]:
    """Validate a list of media/file nodes into assets, dropping unusable nodes."""
    assets: list[MediaAsset] = []
    for node in raw or []:
        if not node:
            continue
        asset = MediaNode.model_validate(node).to_asset(default_class)
        if asset is not None:
            assets.append(asset)
    return assets
