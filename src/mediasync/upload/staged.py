"""Three-phase staged transfer: request a target, POST the bytes, register.

Staged targets are single-use. :meth:`StagedTransferClient.transfer` marks a
target consumed before the first byte is sent, so a retry after a failed
transfer must start again from :meth:`request_target`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

import httpx

from mediasync.constants import DEFAULT_IMAGE_MIME, DEFAULT_VIDEO_MIME
from mediasync.models import LocalFile, MediaAsset, MediaClass, StagedTarget, UploadConfig
from mediasync.upload.client import ShopifyAdminClient
from mediasync.upload.exceptions import RegistrationError, StagedUploadError
from mediasync.upload.results import Err

logger = logging.getLogger(__name__)


class StagedTransferClient:
    """Moves local file bytes into the catalog's staged storage.

    Args:
        client: Catalog client used for ``stagedUploadsCreate`` and ``fileCreate``.
        config: Run configuration (transfer timeout).
        http_client: Optional ``httpx.AsyncClient`` for the byte transfer;
            one is created when omitted.
    """

    def __init__(
        self,
        client: ShopifyAdminClient,
        config: UploadConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client
        self._http = http_client or httpx.AsyncClient(timeout=config.transfer_timeout_seconds)
        self._consumed: set[StagedTarget] = set()

    async def close(self) -> None:
        await self._http.aclose()

    async def request_target(self, file: LocalFile) -> StagedTarget:
        """Allocate a fresh upload target for *file*."""
        default_mime = (
            DEFAULT_VIDEO_MIME if file.media_class is MediaClass.VIDEO else DEFAULT_IMAGE_MIME
        )
        result = await self._client.create_staged_target(
            file.basename,
            file.mime_type or default_mime,
            file.size,
            file.media_class,
        )
        if isinstance(result, Err):
            raise StagedUploadError(
                f"Staged upload rejected for {file.basename}", result.messages
            )
        logger.debug("Staged target for %s: %s", file.basename, result.data.resource_url)
        return result.data

    def discard(self, targets: Iterable[StagedTarget]) -> None:
        """Forget consumed *targets* once the file that used them is finished."""
        for target in targets:
            self._consumed.discard(target)

    async def transfer(self, target: StagedTarget, file: LocalFile) -> bool:
        """POST *file* to *target* as multipart form data.

        Returns ``True`` only on a 2xx response. Transport failures return
        ``False``; nothing is retried here.

        Raises:
            RuntimeError: If *target* was already used for a transfer.
        """
        if target in self._consumed:
            raise RuntimeError(f"Staged target already consumed: {target.resource_url}")
        self._consumed.add(target)

        try:
            # httpx streams the multipart body from the open handle in chunks
            with file.path.open("rb") as fh:
                resp = await self._http.post(
                    target.upload_url,
                    data=dict(target.auth_parameters),
                    files={"file": (file.basename, fh, file.mime_type)},
                )
        except httpx.HTTPError as exc:
            logger.warning("Transfer of %s failed: %s", file.basename, exc)
            return False

        if not resp.is_success:
            logger.warning(
                "Transfer of %s rejected: HTTP %d %s",
                file.basename,
                resp.status_code,
                resp.text[:200],
            )
        return resp.is_success

    async def register_resource(
        self, resource_url: str, media_class: MediaClass, alt: str | None
    ) -> MediaAsset:
        """Create a managed asset from transferred bytes."""
        result = await self._client.register_resource(resource_url, media_class, alt)
        if isinstance(result, Err):
            raise RegistrationError(
                f"Registration rejected for {resource_url}", result.messages
            )
        return result.data
