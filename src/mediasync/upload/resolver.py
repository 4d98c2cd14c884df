"""Filename → catalog entity resolution.

A filename carries a catalog key and an optional positional slot:
``SKU123.jpg`` is slot 0 (the featured slot) of ``SKU123``, and
``SKU123_2.jpg`` is slot 2. Trailing text that is not ``_<digits>`` stays
part of the key, so ``SKU_A_B.jpg`` resolves the key ``SKU_A_B``.
"""

from __future__ import annotations

import logging
import re
from typing import Awaitable, Callable

from mediasync.models import EntityRef, ResolutionPolicy, SlotLabel
from mediasync.upload.client import ShopifyAdminClient
from mediasync.upload.exceptions import NoMatch

logger = logging.getLogger(__name__)

_SLOT_RE = re.compile(r"^(?P<key>.*?)(?:_(?P<index>\d+))?$", re.DOTALL)

Lookup = Callable[[str], Awaitable["EntityRef | None"]]


def parse_slot_label(filename: str) -> SlotLabel:
    """Derive the :class:`SlotLabel` encoded in *filename*.

    Strips any directory part, a ``?query`` suffix and the final extension
    before matching ``<key>`` or ``<key>_<index>``.
    """
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    name = name.split("?", 1)[0]
    stem, dot, _ext = name.rpartition(".")
    if dot and stem:
        name = stem

    match = _SLOT_RE.match(name)
    key = match.group("key") if match else name
    index = match.group("index") if match else None
    return SlotLabel(key=key.strip(), index=int(index) if index else 0)


class IdentifierResolver:
    """Resolves a slot key to an :class:`EntityRef` under a lookup policy.

    ``primary`` tries the custom identifier metafield, ``secondary`` the
    variant SKU, ``auto`` the former then the latter. The first hit wins.
    """

    def __init__(self, client: ShopifyAdminClient, policy: ResolutionPolicy) -> None:
        self._client = client
        self._policy = ResolutionPolicy.parse(policy)

    @property
    def policy(self) -> ResolutionPolicy:
        return self._policy

    def _strategies(self) -> list[tuple[str, Lookup]]:
        primary = ("custom-id", self._client.lookup_by_key)
        secondary = ("sku", self._client.lookup_by_sku)
        if self._policy is ResolutionPolicy.PRIMARY:
            return [primary]
        if self._policy is ResolutionPolicy.SECONDARY:
            return [secondary]
        return [primary, secondary]

    async def resolve(self, slot: SlotLabel) -> EntityRef:
        """Return the entity for *slot*, or raise :class:`NoMatch`."""
        if not slot.key:
            raise NoMatch("Empty catalog key; nothing to look up")

        for name, lookup in self._strategies():
            entity = await lookup(slot.key)
            if entity is not None:
                logger.debug("Resolved %r via %s -> %s", slot.key, name, entity.entity_id)
                return entity

        raise NoMatch(f"No entity matches key {slot.key!r} (policy={self._policy.value})")
