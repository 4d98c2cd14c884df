"""Reconciles remote product media with the slots a batch uploads.

Each uploaded file owns one slot of an entity's media list. The reconciler
makes the slot idempotent across runs, attaches the new asset through a
fallback chain, links it to a variant where the file resolved through a
SKU, and restores a stable display order once the batch is done.

Ordering rules:

* Entity-level media carry the alt ``<title>`` (slot 0) or
  ``<title> (<n>)`` (slot n-1) and come first, ascending by slot.
* Media of no recognised shape keep their relative order after them.
* Variant-level media carry ``<title> - <variant title>`` and come last,
  unless the entity has no entity-level media at all, in which case they
  lead.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable, Sequence

import httpx

from mediasync.models import (
    EntityRef,
    LocalFile,
    MediaAsset,
    MediaClass,
    MediaStatus,
    Readiness,
    ReorderResult,
    SlotLabel,
    StagedTarget,
    UploadConfig,
    VariantLink,
)
from mediasync.upload.client import (
    PermanentError,
    RateLimitError,
    ShopifyAdminClient,
    TransientError,
)
from mediasync.upload.exceptions import AttachError, ReorderError
from mediasync.upload.poller import ReadinessPoller
from mediasync.upload.results import Err

logger = logging.getLogger(__name__)

_NUMBERED_ALT_RE = re.compile(r"^(.+?) \((\d+)\)$")

# Client failures that end a reorder attempt without touching other entities
_REORDER_FAILURES = (ReorderError, RateLimitError, TransientError, PermanentError, httpx.HTTPError)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def build_alt_label(entity: EntityRef, slot: SlotLabel) -> str:
    """Return the alt text this run assigns to *slot* on *entity*.

    >>> build_alt_label(EntityRef("gid://p/1", "Shirt"), SlotLabel("S1", 2))
    'Shirt (3)'
    """
    title = (entity.entity_title or "").strip()
    if not title:
        return slot.token
    base = title
    if entity.is_variant_scoped and entity.variant_title:
        base = f"{title} - {entity.variant_title.strip()}"
    if slot.index > 0:
        return f"{base} ({slot.index + 1})"
    return base


def find_occupants(
    media: Iterable[MediaAsset], file: LocalFile, slot: SlotLabel, alt_label: str
) -> list[MediaAsset]:
    """Select the assets that already hold the slot *file* is about to fill.

    An asset of the same media class occupies the slot when its alt equals
    *alt_label* or the slot token, or its source basename equals the local
    basename. All comparisons ignore case.
    """
    labels = {alt_label.strip().casefold(), slot.token.casefold()}
    basename = file.basename.casefold()
    occupants = []
    for asset in media:
        if asset.media_class is not file.media_class:
            continue
        alt = (asset.alt_label or "").strip().casefold()
        source = (asset.source_basename or "").casefold()
        if (alt and alt in labels) or (source and source == basename):
            occupants.append(asset)
    return occupants


def _slot_index(alt: str, title: str) -> int | None:
    """Slot index encoded in an entity-level alt, or ``None``."""
    if alt == title:
        return 0
    match = _NUMBERED_ALT_RE.match(alt)
    if match and match.group(1) == title:
        return max(int(match.group(2)) - 1, 0)
    return None


def plan_media_order(media: Sequence[MediaAsset], title: str) -> list[str]:
    """Return media ids of *media* in their target display order."""
    title = (title or "").strip()
    if not title:
        return [m.id for m in media]

    entity_level: list[tuple[int, int, str]] = []
    variant_level: list[tuple[int, int, str]] = []
    others: list[str] = []
    variant_prefix = f"{title} - "

    for position, asset in enumerate(media):
        alt = (asset.alt_label or "").strip()
        index = _slot_index(alt, title)
        if index is not None:
            entity_level.append((index, position, asset.id))
        elif alt.startswith(variant_prefix):
            match = _NUMBERED_ALT_RE.match(alt)
            variant_index = int(match.group(2)) - 1 if match else 0
            variant_level.append((variant_index, position, asset.id))
        else:
            others.append(asset.id)

    entity_ids = [media_id for _, _, media_id in sorted(entity_level)]
    variant_ids = [media_id for _, _, media_id in sorted(variant_level)]
    if not entity_ids and variant_ids:
        return variant_ids + others
    return entity_ids + others + variant_ids


def build_moves(current_ids: Sequence[str], target_ids: Sequence[str]) -> list[dict[str, str]]:
    """Compute sequential ``{id, newPosition}`` moves turning one order into another.

    Positions are zero-based and applied in order; an already correct
    order yields no moves.
    """
    working = list(current_ids)
    moves: list[dict[str, str]] = []
    for position, media_id in enumerate(target_ids):
        if position < len(working) and working[position] == media_id:
            continue
        working.remove(media_id)
        working.insert(position, media_id)
        moves.append({"id": media_id, "newPosition": str(position)})
    return moves


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class MediaReconciler:
    """Slot pre-check, attach chain, variant link and batch-end reorder.

    Every method that mutates an entity's media must be called while the
    caller holds that entity's lock.
    """

    def __init__(
        self,
        client: ShopifyAdminClient,
        poller: ReadinessPoller,
        config: UploadConfig,
    ) -> None:
        self._client = client
        self._poller = poller
        self._config = config

    async def clear_slot(
        self, entity: EntityRef, slot: SlotLabel, file: LocalFile, alt_label: str
    ) -> tuple[int, tuple[str, ...]]:
        """Delete every asset occupying *slot*.

        Returns:
            ``(deleted_count, delete_error_messages)``. Delete errors do not
            stop the upload; they are reported on the file's result.
        """
        media = await self._client.list_media(entity.entity_id)
        occupants = find_occupants(media, file, slot, alt_label)
        if not occupants:
            return 0, ()

        ids = [asset.id for asset in occupants]
        logger.info(
            "Replacing %d existing asset(s) in slot %s of %s",
            len(ids),
            slot.token,
            entity.entity_id,
        )
        result = await self._client.delete_media(entity.entity_id, ids)
        if isinstance(result, Err):
            logger.warning("Could not delete %s from %s: %s", ids, entity.entity_id, result.messages)
            return 0, result.messages
        return result.data, ()

    async def attach(
        self,
        entity: EntityRef,
        target: StagedTarget,
        registered: MediaAsset | None,
        alt_label: str,
        media_class: MediaClass,
    ) -> MediaAsset:
        """Attach the uploaded bytes to *entity*.

        Tries the registered asset by id first (when there is one), then the
        staged resource URL.

        Raises:
            AttachError: Every path failed; carries all collected messages.
        """
        messages: list[str] = []

        if registered is not None:
            result = await self._client.attach_by_id(entity.entity_id, registered.id, alt_label)
            if isinstance(result, Err):
                logger.warning(
                    "Attach by id %s failed for %s: %s",
                    registered.id,
                    entity.entity_id,
                    result.messages,
                )
                messages.extend(result.messages)
            else:
                return result.data[0] if result.data else registered

        result = await self._client.attach_by_source(
            entity.entity_id, target.resource_url, media_class, alt_label
        )
        if isinstance(result, Err):
            messages.extend(result.messages)
        elif result.data:
            return result.data[0]
        else:
            messages.append("productCreateMedia returned no media")

        raise AttachError(f"Could not attach media to {entity.entity_id}", messages)

    async def link_variant(
        self, entity: EntityRef, asset: MediaAsset, readiness: Readiness | None
    ) -> tuple[VariantLink, tuple[str, ...]]:
        """Make *asset* the media of the entity's variant.

        Only assets confirmed READY are linked. When *readiness* is unknown
        the asset is polled first.
        """
        if not entity.is_variant_scoped:
            return VariantLink.NOT_APPLICABLE, ()

        if readiness is None:
            interval, timeout = self._config.poll_settings(asset.media_class)
            readiness = await self._poller.wait(asset.id, interval, timeout)
        if readiness is not Readiness.READY:
            logger.info(
                "Variant link for %s skipped: asset %s is %s",
                entity.variant_id,
                asset.id,
                readiness.value,
            )
            return VariantLink.SKIPPED_NOT_READY, ()

        result = await self._client.set_variant_media(
            entity.entity_id, entity.variant_id, asset.id
        )
        if not isinstance(result, Err):
            return VariantLink.LINKED, ()

        logger.warning(
            "Bulk variant update failed for %s (%s); detaching and appending",
            entity.variant_id,
            result.messages,
        )
        messages = list(result.messages)
        current = await self._client.list_variant_media(entity.variant_id)
        stale = [media_id for media_id in current if media_id != asset.id]
        detached = await self._client.detach_variant_media(
            entity.entity_id, entity.variant_id, stale
        )
        if isinstance(detached, Err):
            messages.extend(detached.messages)
            return VariantLink.FAILED, tuple(messages)

        appended = await self._client.append_variant_media(
            entity.entity_id, entity.variant_id, asset.id
        )
        if isinstance(appended, Err):
            messages.extend(appended.messages)
            return VariantLink.FAILED, tuple(messages)
        return VariantLink.LINKED_VIA_APPEND, tuple(messages)

    async def reorder(self, entity: EntityRef, created: Sequence[MediaAsset]) -> ReorderResult:
        """Restore the display order of *entity* after a batch.

        Waits (best effort) for every asset created in the batch to finish
        processing, then moves media into the planned order. Failures are
        reported on the result and never undo attaches.
        """
        pending = [asset for asset in created if asset.status is not MediaStatus.READY]
        if pending:
            await asyncio.gather(
                *(
                    self._poller.wait(asset.id, *self._config.poll_settings(asset.media_class))
                    for asset in pending
                ),
                return_exceptions=True,
            )

        try:
            media = await self._client.list_media(entity.entity_id)
            current = [asset.id for asset in media]
            moves = build_moves(current, plan_media_order(media, entity.entity_title))
            if not moves:
                return ReorderResult(entity.entity_id, "unchanged")

            result = await self._client.reorder(entity.entity_id, moves)
            if isinstance(result, Err):
                raise ReorderError(f"Reorder rejected for {entity.entity_id}", result.messages)
        except _REORDER_FAILURES as exc:
            messages = getattr(exc, "messages", None) or (str(exc),)
            logger.error("Reorder failed for %s: %s", entity.entity_id, messages)
            return ReorderResult(entity.entity_id, "failed", errors=tuple(messages))

        logger.info("Reordered %s with %d move(s)", entity.entity_id, len(moves))
        return ReorderResult(entity.entity_id, "reordered", moves=len(moves))
