"""Shared pytest fixtures for the media sync tests.

Provides an in-memory fake of the Shopify Admin client, a fast-polling run
configuration, local media files, and an httpx mock transport standing in
for staged-upload storage.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import replace
from pathlib import Path

import httpx
import pytest

from mediasync.models import (
    EntityRef,
    LocalFile,
    MediaAsset,
    MediaClass,
    MediaStatus,
    StagedTarget,
    UploadConfig,
)
from mediasync.upload.results import Err, Ok
from mediasync.upload.schemas import url_basename


# ======================================================================
# Fake catalog
# ======================================================================


class FakeCatalog:
    """In-memory stand-in for ShopifyAdminClient.

    Products hold an ordered media list. Every call is appended to
    ``calls`` as ``(operation, entity_or_asset_id)``. Error attributes
    (``staged_errors``, ``attach_source_errors`` ...) make the matching
    mutation return ``Err`` with those messages.
    """

    def __init__(self) -> None:
        self.titles: dict[str, str] = {}
        self.keys: dict[str, str] = {}
        self.skus: dict[str, EntityRef] = {}
        self.media: dict[str, list[MediaAsset]] = {}
        self.files: dict[str, MediaAsset] = {}
        self.variant_media: dict[str, list[str]] = {}
        self.status_script: dict[str, list[MediaStatus]] = {}
        self.default_status = MediaStatus.READY
        self.calls: list[tuple[str, str]] = []
        self.targets: list[StagedTarget] = []

        self.staged_errors: tuple[str, ...] = ()
        self.register_errors: tuple[str, ...] = ()
        self.attach_id_errors: tuple[str, ...] = ()
        self.attach_source_errors: tuple[str, ...] = ()
        self.delete_errors: tuple[str, ...] = ()
        self.set_variant_errors: tuple[str, ...] = ()
        self.reorder_errors: tuple[str, ...] = ()

        self._ids = itertools.count(1)

    # -- setup ----------------------------------------------------------

    def add_product(self, key: str, title: str, media: list[MediaAsset] | None = None) -> str:
        entity_id = f"gid://shopify/Product/{key}"
        self.titles[entity_id] = title
        self.keys[key] = entity_id
        self.media[entity_id] = list(media or [])
        return entity_id

    def add_variant(self, entity_id: str, sku: str, variant_title: str) -> str:
        variant_id = f"gid://shopify/ProductVariant/{sku}"
        self.skus[sku] = EntityRef(entity_id, self.titles[entity_id], variant_id, variant_title)
        self.variant_media[variant_id] = []
        return variant_id

    def alts(self, entity_id: str) -> list[str | None]:
        return [m.alt_label for m in self.media[entity_id]]

    def ops(self, name: str) -> list[str]:
        return [target for op, target in self.calls if op == name]

    def _new_id(self, media_class: MediaClass) -> str:
        kind = "Video" if media_class is MediaClass.VIDEO else "MediaImage"
        return f"gid://shopify/{kind}/{next(self._ids)}"

    # -- lookups --------------------------------------------------------

    async def lookup_by_key(self, key: str) -> EntityRef | None:
        self.calls.append(("lookup_by_key", key))
        entity_id = self.keys.get(key)
        if entity_id is None:
            return None
        return EntityRef(entity_id, self.titles[entity_id])

    async def lookup_by_sku(self, sku: str) -> EntityRef | None:
        self.calls.append(("lookup_by_sku", sku))
        return self.skus.get(sku)

    # -- product media --------------------------------------------------

    async def list_media(self, entity_id: str) -> list[MediaAsset]:
        self.calls.append(("list_media", entity_id))
        await asyncio.sleep(0)
        return list(self.media[entity_id])

    async def delete_media(self, entity_id: str, media_ids: list[str]):
        self.calls.append(("delete_media", entity_id))
        if self.delete_errors:
            return Err(self.delete_errors)
        before = len(self.media[entity_id])
        self.media[entity_id] = [m for m in self.media[entity_id] if m.id not in media_ids]
        return Ok(before - len(self.media[entity_id]))

    async def attach_by_source(self, entity_id, resource_url, media_class, alt):
        self.calls.append(("attach_by_source", entity_id))
        if self.attach_source_errors:
            return Err(self.attach_source_errors)
        asset = MediaAsset(
            id=self._new_id(media_class),
            media_class=media_class,
            alt_label=alt,
            source_basename=url_basename(resource_url),
            status=MediaStatus.PENDING,
        )
        self.media[entity_id].append(asset)
        return Ok([asset])

    async def attach_by_id(self, entity_id, asset_id, alt):
        self.calls.append(("attach_by_id", entity_id))
        if self.attach_id_errors:
            return Err(self.attach_id_errors)
        asset = replace(self.files[asset_id], alt_label=alt)
        self.media[entity_id].append(asset)
        return Ok([asset])

    async def reorder(self, entity_id, moves):
        self.calls.append(("reorder", entity_id))
        if self.reorder_errors:
            return Err(self.reorder_errors)
        media = self.media[entity_id]
        for move in moves:
            asset = next(m for m in media if m.id == move["id"])
            media.remove(asset)
            media.insert(int(move["newPosition"]), asset)
        return Ok(None)

    # -- staged uploads and files ----------------------------------------

    async def create_staged_target(self, filename, mime_type, size, media_class):
        self.calls.append(("create_staged_target", filename))
        if self.staged_errors:
            return Err(self.staged_errors)
        n = len(self.targets) + 1
        target = StagedTarget(
            upload_url="https://staged.test/upload",
            resource_url=f"https://staged.test/tmp/{n}/{filename}",
            auth_parameters=(("key", f"tmp/{n}/{filename}"), ("policy", "p")),
        )
        self.targets.append(target)
        return Ok(target)

    async def register_resource(self, resource_url, media_class, alt):
        self.calls.append(("register_resource", resource_url))
        if self.register_errors:
            return Err(self.register_errors)
        asset = MediaAsset(
            id=self._new_id(media_class),
            media_class=media_class,
            alt_label=alt,
            source_basename=url_basename(resource_url),
        )
        self.files[asset.id] = asset
        return Ok(asset)

    async def get_status(self, asset_id: str) -> MediaStatus:
        self.calls.append(("get_status", asset_id))
        script = self.status_script.get(asset_id)
        if script:
            return script.pop(0) if len(script) > 1 else script[0]
        return self.default_status

    # -- variant media --------------------------------------------------

    async def set_variant_media(self, entity_id, variant_id, asset_id):
        self.calls.append(("set_variant_media", variant_id))
        if self.set_variant_errors:
            return Err(self.set_variant_errors)
        self.variant_media[variant_id] = [asset_id]
        return Ok(None)

    async def list_variant_media(self, variant_id):
        self.calls.append(("list_variant_media", variant_id))
        return list(self.variant_media.get(variant_id, []))

    async def detach_variant_media(self, entity_id, variant_id, media_ids):
        self.calls.append(("detach_variant_media", variant_id))
        current = self.variant_media.get(variant_id, [])
        self.variant_media[variant_id] = [m for m in current if m not in media_ids]
        return Ok(None)

    async def append_variant_media(self, entity_id, variant_id, asset_id):
        self.calls.append(("append_variant_media", variant_id))
        self.variant_media.setdefault(variant_id, []).append(asset_id)
        return Ok(None)


# ======================================================================
# Staged storage
# ======================================================================


class StagedStorage:
    """httpx handler recording staged uploads; ``fail_next`` answers with 500s."""

    def __init__(self, delay: float = 0.0) -> None:
        self.requests: list[httpx.Request] = []
        self.fail_next = 0
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_next:
                self.fail_next -= 1
                return httpx.Response(500, text="storage unavailable")
            return httpx.Response(204)
        finally:
            self.in_flight -= 1


# ======================================================================
# Fixtures
# ======================================================================


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def storage() -> StagedStorage:
    return StagedStorage()


@pytest.fixture
async def storage_http(storage: StagedStorage):
    """AsyncClient whose requests are answered by the StagedStorage handler."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(storage))
    yield client
    await client.aclose()


@pytest.fixture
def upload_config() -> UploadConfig:
    """Run config with millisecond polls and no retry backoff."""
    return UploadConfig(
        shop="test-shop.myshopify.com",
        access_token="shpat_test",
        retry_backoff_seconds=0,
        image_poll_interval_seconds=0.01,
        image_poll_timeout_seconds=0.1,
        video_poll_interval_seconds=0.01,
        video_poll_timeout_seconds=0.1,
    )


@pytest.fixture
def media_dir(tmp_path: Path) -> Path:
    root = tmp_path / "media"
    root.mkdir()
    return root


@pytest.fixture
def make_file(media_dir: Path):
    """Factory writing a small media file and returning its LocalFile."""

    def _make(name: str, mime_type: str = "image/jpeg", content: bytes = b"\xff\xd8 fake jpeg") -> LocalFile:
        path = media_dir / name
        path.write_bytes(content)
        return LocalFile(path=path, basename=name, size=len(content), mime_type=mime_type)

    return _make
