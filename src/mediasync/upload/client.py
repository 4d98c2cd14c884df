"""Shopify Admin GraphQL client for the media sync pipeline.

Implements every remote operation the pipeline consumes:

  * identifier lookups (``productByIdentifier``, ``productVariants``)
  * media listing, deletion, attachment and reordering on a product
  * staged upload targets (``stagedUploadsCreate``) and file registration
    (``fileCreate``)
  * processing status of a media node
  * variant media linking (bulk set, detach, append)

Queries return typed values; mutations return :class:`Ok` / :class:`Err`
so payload-level rejections (``userErrors``) stay data, while transport
failures, throttling and top-level GraphQL errors raise.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from mediasync.constants import MEDIA_PAGE_SIZE, VARIANT_MEDIA_PAGE_SIZE
from mediasync.models import EntityRef, MediaAsset, MediaClass, MediaStatus, StagedTarget, UploadConfig
from mediasync.upload.circuit_breaker import RollingWindowCircuitBreaker
from mediasync.upload.rate_limiter import AdaptiveRateLimiter
from mediasync.upload.results import Err, Ok, Result
from mediasync.upload.schemas import (
    MediaNode,
    ProductNode,
    StagedTargetNode,
    VariantNode,
    error_messages,
    media_assets,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class RateLimitError(Exception):
    """Raised on HTTP 429 or a GraphQL ``THROTTLED`` error."""


class TransientError(Exception):
    """Raised on 5xx responses that may succeed on retry."""


class PermanentError(Exception):
    """Raised on other 4xx responses and top-level GraphQL errors."""


# ---------------------------------------------------------------------------
# GraphQL documents
# ---------------------------------------------------------------------------

_MEDIA_FIELDS = """
  id alt mediaContentType status
  ... on MediaImage { image { url } }
  ... on Video { filename originalSource { url } }
"""

_FILE_FIELDS = """
  __typename id alt fileStatus
  ... on MediaImage { mediaContentType image { url } }
  ... on Video { mediaContentType filename originalSource { url } }
"""

PRODUCT_BY_IDENTIFIER = """
query ProductByIdentifier($identifier: ProductIdentifierInput!) {
  productByIdentifier(identifier: $identifier) { id title }
}
"""

VARIANT_BY_SKU = """
query VariantBySku($query: String!) {
  productVariants(first: 1, query: $query) {
    nodes { id title sku product { id title } }
  }
}
"""

PRODUCT_MEDIA = f"""
query ProductMedia($id: ID!, $first: Int!) {{
  product(id: $id) {{
    media(first: $first) {{ nodes {{ {_MEDIA_FIELDS} }} }}
  }}
}}
"""

PRODUCT_DELETE_MEDIA = """
mutation ProductDeleteMedia($productId: ID!, $mediaIds: [ID!]!) {
  productDeleteMedia(productId: $productId, mediaIds: $mediaIds) {
    deletedMediaIds
    mediaUserErrors { field message }
  }
}
"""

STAGED_UPLOADS_CREATE = """
mutation StagedUploadsCreate($input: [StagedUploadInput!]!) {
  stagedUploadsCreate(input: $input) {
    stagedTargets { url resourceUrl parameters { name value } }
    userErrors { field message }
  }
}
"""

FILE_CREATE = f"""
mutation FileCreate($files: [FileCreateInput!]!) {{
  fileCreate(files: $files) {{
    files {{ {_FILE_FIELDS} }}
    userErrors {{ field message code }}
  }}
}}
"""

MEDIA_STATUS = """
query MediaStatus($id: ID!) {
  node(id: $id) {
    id
    ... on Media { status }
    ... on File { fileStatus }
  }
}
"""

PRODUCT_CREATE_MEDIA = f"""
mutation ProductCreateMedia($productId: ID!, $media: [CreateMediaInput!]!) {{
  productCreateMedia(productId: $productId, media: $media) {{
    media {{ {_MEDIA_FIELDS} }}
    mediaUserErrors {{ field message }}
  }}
}}
"""

FILE_ATTACH = f"""
mutation FileAttach($files: [FileUpdateInput!]!) {{
  fileUpdate(files: $files) {{
    files {{ {_FILE_FIELDS} }}
    userErrors {{ field message code }}
  }}
}}
"""

VARIANTS_BULK_SET_MEDIA = """
mutation VariantSetMedia($productId: ID!, $variants: [ProductVariantsBulkInput!]!) {
  productVariantsBulkUpdate(productId: $productId, variants: $variants) {
    productVariants { id }
    userErrors { field message }
  }
}
"""

VARIANT_MEDIA = """
query VariantMedia($id: ID!, $first: Int!) {
  productVariant(id: $id) { id media(first: $first) { nodes { id } } }
}
"""

VARIANT_DETACH_MEDIA = """
mutation VariantDetachMedia($productId: ID!, $variantMedia: [ProductVariantDetachMediaInput!]!) {
  productVariantDetachMedia(productId: $productId, variantMedia: $variantMedia) {
    productVariants { id }
    userErrors { field message }
  }
}
"""

VARIANT_APPEND_MEDIA = """
mutation VariantAppendMedia($productId: ID!, $variantMedia: [ProductVariantAppendMediaInput!]!) {
  productVariantAppendMedia(productId: $productId, variantMedia: $variantMedia) {
    productVariants { id }
    userErrors { field message }
  }
}
"""

PRODUCT_REORDER_MEDIA = """
mutation ProductReorderMedia($id: ID!, $moves: [MoveInput!]!) {
  productReorderMedia(id: $id, moves: $moves) {
    job { id }
    mediaUserErrors { field message }
  }
}
"""


def _dig(data: dict[str, Any] | None, *path: str) -> Any:
    """Walk nested dicts, returning ``None`` at the first missing key."""
    node: Any = data
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _sku_query(sku: str) -> str:
    escaped = sku.replace("\\", "\\\\").replace('"', '\\"')
    return f'sku:"{escaped}"'


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class ShopifyAdminClient:
    """Async Admin GraphQL client with throttling and circuit breaker integration.

    Usage::

        cb = RollingWindowCircuitBreaker()
        rl = AdaptiveRateLimiter(RateLimiterConfig(config.rate_limit_tier), cb)
        async with ShopifyAdminClient(config, cb, rl) as client:
            entity = await client.lookup_by_key("7001")
    """

    def __init__(
        self,
        config: UploadConfig,
        circuit_breaker: RollingWindowCircuitBreaker,
        rate_limiter: AdaptiveRateLimiter,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not config.access_token:
            raise RuntimeError(
                "Access token not set -- run `mediasync config set-token` "
                "or export SHOPIFY_ACCESS_TOKEN"
            )
        self._config = config
        self._circuit_breaker = circuit_breaker
        self._rate_limiter = rate_limiter
        self._http = http_client or httpx.AsyncClient(timeout=config.request_timeout_seconds)
        self._headers = {
            "X-Shopify-Access-Token": config.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "mediasync/0.1",
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()

    async def __aenter__(self) -> ShopifyAdminClient:
        return self

    async def __aexit__(self, exc_type: type | None, exc: BaseException | None, tb: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def execute(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Run a GraphQL document and return its ``data`` object.

        Throttling, 5xx responses and transport errors are retried with
        exponential backoff up to ``throttle_retries`` extra attempts.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._config.throttle_retries + 1),
            wait=wait_exponential(multiplier=self._config.retry_backoff_seconds, max=30),
            retry=retry_if_exception_type((RateLimitError, TransientError, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await self._safe_call(query, variables)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _safe_call(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """POST one GraphQL request and record the outcome on the circuit breaker."""
        await self._rate_limiter.wait_if_needed()
        try:
            resp = await self._http.post(
                self._config.graphql_url,
                json={"query": query, "variables": variables},
                headers=self._headers,
            )
        except httpx.TransportError:
            self._circuit_breaker.record_error()
            raise

        if resp.status_code == 429:
            self._circuit_breaker.record_throttled()
            raise RateLimitError(f"429 throttled (Retry-After={resp.headers.get('Retry-After')})")
        if resp.status_code >= 500:
            self._circuit_breaker.record_error()
            raise TransientError(f"{resp.status_code} from catalog API")
        if resp.status_code >= 400:
            self._circuit_breaker.record_error()
            raise PermanentError(f"{resp.status_code}: {resp.text[:500]}")

        payload = resp.json()
        self._rate_limiter.observe_cost(payload.get("extensions"))

        errors = payload.get("errors")
        if errors:
            if any(_dig(e, "extensions", "code") == "THROTTLED" for e in errors):
                self._circuit_breaker.record_throttled()
                raise RateLimitError("GraphQL query cost throttled")
            self._circuit_breaker.record_error()
            raise PermanentError(f"GraphQL error: {errors}")

        self._circuit_breaker.record_success()
        return payload.get("data") or {}

    # ------------------------------------------------------------------
    # Identifier lookups
    # ------------------------------------------------------------------

    async def lookup_by_key(self, key: str) -> EntityRef | None:
        """Find a product by its custom identifier metafield."""
        data = await self.execute(
            PRODUCT_BY_IDENTIFIER,
            {
                "identifier": {
                    "customId": {
                        "namespace": self._config.custom_id_namespace,
                        "key": self._config.custom_id_key,
                        "value": key,
                    }
                }
            },
        )
        raw = data.get("productByIdentifier")
        if not raw:
            return None
        product = ProductNode.model_validate(raw)
        return EntityRef(entity_id=product.id, entity_title=product.title)

    async def lookup_by_sku(self, sku: str) -> EntityRef | None:
        """Find the first variant with *sku* and return it paired with its product."""
        data = await self.execute(VARIANT_BY_SKU, {"query": _sku_query(sku)})
        nodes = _dig(data, "productVariants", "nodes") or []
        if not nodes:
            return None
        return VariantNode.model_validate(nodes[0]).to_entity()

    # ------------------------------------------------------------------
    # Product media
    # ------------------------------------------------------------------

    async def list_media(self, entity_id: str) -> list[MediaAsset]:
        """Return the product's media in display order."""
        data = await self.execute(PRODUCT_MEDIA, {"id": entity_id, "first": MEDIA_PAGE_SIZE})
        return media_assets(_dig(data, "product", "media", "nodes"))

    async def delete_media(self, entity_id: str, media_ids: list[str]) -> Result[int]:
        """Delete media from a product; ``Ok`` carries the deleted count."""
        if not media_ids:
            return Ok(0)
        data = await self.execute(
            PRODUCT_DELETE_MEDIA, {"productId": entity_id, "mediaIds": media_ids}
        )
        payload = data.get("productDeleteMedia") or {}
        messages = error_messages(payload.get("mediaUserErrors"))
        if messages:
            return Err(messages)
        return Ok(len(payload.get("deletedMediaIds") or []))

    async def attach_by_source(
        self, entity_id: str, resource_url: str, media_class: MediaClass, alt: str | None
    ) -> Result[list[MediaAsset]]:
        """Create product media from a staged resource URL."""
        data = await self.execute(
            PRODUCT_CREATE_MEDIA,
            {
                "productId": entity_id,
                "media": [
                    {
                        "originalSource": resource_url,
                        "mediaContentType": media_class.value,
                        "alt": alt or None,
                    }
                ],
            },
        )
        payload = data.get("productCreateMedia") or {}
        messages = error_messages(payload.get("mediaUserErrors"))
        if messages:
            return Err(messages)
        return Ok(media_assets(payload.get("media"), media_class))

    async def attach_by_id(
        self, entity_id: str, asset_id: str, alt: str | None
    ) -> Result[list[MediaAsset]]:
        """Reference an already registered file from a product."""
        file_input: dict[str, Any] = {"id": asset_id, "referencesToAdd": [entity_id]}
        if alt:
            file_input["alt"] = alt
        data = await self.execute(FILE_ATTACH, {"files": [file_input]})
        payload = data.get("fileUpdate") or {}
        messages = error_messages(payload.get("userErrors"))
        if messages:
            return Err(messages)
        return Ok(media_assets(payload.get("files")))

    async def reorder(self, entity_id: str, moves: list[dict[str, str]]) -> Result[None]:
        """Apply ``{id, newPosition}`` moves to a product's media list."""
        if not moves:
            return Ok(None)
        data = await self.execute(PRODUCT_REORDER_MEDIA, {"id": entity_id, "moves": moves})
        messages = error_messages(_dig(data, "productReorderMedia", "mediaUserErrors"))
        return Err(messages) if messages else Ok(None)

    # ------------------------------------------------------------------
    # Staged uploads and files
    # ------------------------------------------------------------------

    async def create_staged_target(
        self, filename: str, mime_type: str, size: int, media_class: MediaClass
    ) -> Result[StagedTarget]:
        """Allocate a one-time POST upload target sized and typed for the file."""
        data = await self.execute(
            STAGED_UPLOADS_CREATE,
            {
                "input": [
                    {
                        "resource": media_class.value,
                        "filename": filename,
                        "mimeType": mime_type,
                        "fileSize": str(size),
                        "httpMethod": "POST",
                    }
                ]
            },
        )
        payload = data.get("stagedUploadsCreate") or {}
        messages = error_messages(payload.get("userErrors"))
        if messages:
            return Err(messages)
        targets = payload.get("stagedTargets") or []
        target = StagedTargetNode.model_validate(targets[0]).to_target() if targets else None
        if target is None:
            return Err.of("stagedUploadsCreate returned no usable target")
        return Ok(target)

    async def register_resource(
        self, resource_url: str, media_class: MediaClass, alt: str | None
    ) -> Result[MediaAsset]:
        """Create a managed file from staged bytes."""
        data = await self.execute(
            FILE_CREATE,
            {
                "files": [
                    {
                        "contentType": media_class.value,
                        "originalSource": resource_url,
                        "alt": alt or None,
                    }
                ]
            },
        )
        payload = data.get("fileCreate") or {}
        messages = error_messages(payload.get("userErrors"))
        if messages:
            return Err(messages)
        assets = media_assets(payload.get("files"), media_class)
        if not assets:
            return Err.of("fileCreate returned no file")
        return Ok(assets[0])

    async def get_status(self, asset_id: str) -> MediaStatus:
        """Return the processing status of a media or file node."""
        data = await self.execute(MEDIA_STATUS, {"id": asset_id})
        node = data.get("node")
        if not node:
            return MediaStatus.PENDING
        parsed = MediaNode.model_validate(node)
        return MediaStatus.from_remote(parsed.status or parsed.file_status)

    # ------------------------------------------------------------------
    # Variant media
    # ------------------------------------------------------------------

    async def set_variant_media(
        self, entity_id: str, variant_id: str, asset_id: str
    ) -> Result[None]:
        """Point a variant at one media item via ``productVariantsBulkUpdate``."""
        data = await self.execute(
            VARIANTS_BULK_SET_MEDIA,
            {"productId": entity_id, "variants": [{"id": variant_id, "mediaId": asset_id}]},
        )
        messages = error_messages(_dig(data, "productVariantsBulkUpdate", "userErrors"))
        return Err(messages) if messages else Ok(None)

    async def list_variant_media(self, variant_id: str) -> list[str]:
        """Return ids of the media currently linked to a variant."""
        data = await self.execute(
            VARIANT_MEDIA, {"id": variant_id, "first": VARIANT_MEDIA_PAGE_SIZE}
        )
        nodes = _dig(data, "productVariant", "media", "nodes") or []
        return [n["id"] for n in nodes if n and n.get("id")]

    async def detach_variant_media(
        self, entity_id: str, variant_id: str, media_ids: list[str]
    ) -> Result[None]:
        if not media_ids:
            return Ok(None)
        data = await self.execute(
            VARIANT_DETACH_MEDIA,
            {
                "productId": entity_id,
                "variantMedia": [{"variantId": variant_id, "mediaIds": media_ids}],
            },
        )
        messages = error_messages(_dig(data, "productVariantDetachMedia", "userErrors"))
        return Err(messages) if messages else Ok(None)

    async def append_variant_media(
        self, entity_id: str, variant_id: str, asset_id: str
    ) -> Result[None]:
        data = await self.execute(
            VARIANT_APPEND_MEDIA,
            {
                "productId": entity_id,
                "variantMedia": [{"variantId": variant_id, "mediaIds": [asset_id]}],
            },
        )
        messages = error_messages(_dig(data, "productVariantAppendMedia", "userErrors"))
        return Err(messages) if messages else Ok(None)
