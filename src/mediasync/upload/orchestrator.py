"""Batch orchestrator for the media sync pipeline.

Composes the resolver, staged transfer client, readiness poller and media
reconciler into a batch engine that:

* Limits concurrency with ``asyncio.Semaphore``
* Serializes all media mutations for one entity with a keyed lock
* Retries a whole file pipeline on transient failures, with a fresh
  staged target every attempt
* Reorders every touched entity once all files are done
* Handles graceful shutdown on Ctrl+C (SIGINT/SIGTERM) and a run timeout
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from mediasync.models import (
    BatchReport,
    BatchResult,
    EntityRef,
    LocalFile,
    MediaAsset,
    MediaClass,
    MediaStatus,
    Readiness,
    ReorderResult,
    StagedTarget,
    StatusTag,
    UploadConfig,
    VariantLink,
)
from mediasync.upload.client import RateLimitError, ShopifyAdminClient, TransientError
from mediasync.upload.exceptions import (
    AttachError,
    MediaSyncError,
    NoMatch,
    ReadinessTimeout,
    RegistrationError,
    StagedUploadError,
    TransferError,
)
from mediasync.upload.fsm import FileLifecycleSM, create_fsm
from mediasync.upload.keyed_lock import KeyedLock
from mediasync.upload.poller import ReadinessPoller
from mediasync.upload.reconciler import MediaReconciler, build_alt_label
from mediasync.upload.resolver import IdentifierResolver, parse_slot_label
from mediasync.upload.staged import StagedTransferClient

logger = logging.getLogger(__name__)

# Failures worth running the whole file pipeline again for
_RETRYABLE = (TransferError, RateLimitError, TransientError, httpx.TransportError)

# First match wins; anything unlisted is reported as ``error``
_STATUS_BY_ERROR: tuple[tuple[type[Exception], StatusTag], ...] = (
    (NoMatch, StatusTag.NO_MATCH),
    (StagedUploadError, StatusTag.STAGED_UPLOAD_ERROR),
    (TransferError, StatusTag.TRANSFER_FAILED),
    (RegistrationError, StatusTag.REGISTRATION_FAILED),
    (ReadinessTimeout, StatusTag.TIMEOUT),
    (AttachError, StatusTag.ATTACH_FAILED),
)


@dataclass
class FileRun:
    """Mutable bookkeeping for one file across its attempts."""

    file: LocalFile
    fsm: FileLifecycleSM = field(default_factory=create_fsm)
    attempts: int = 0
    replaced: int = 0
    registration_rejected: bool = False
    failed_stage: str | None = None
    entity: EntityRef | None = None
    targets: list[StagedTarget] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class BatchOrchestrator:
    """Main engine coordinating the media sync pipeline for a batch of files.

    Usage::

        orchestrator = BatchOrchestrator(client, config)
        orchestrator.setup_signal_handlers()
        report = await orchestrator.run(files)

    Args:
        client: Catalog client shared by every component.
        config: Immutable run configuration.
        resolver, staged, poller, reconciler: Optional pre-built components;
            defaults are built from *client* and *config*.
        progress: Optional Rich progress tracker (omit for headless mode).
    """

    def __init__(
        self,
        client: ShopifyAdminClient,
        config: UploadConfig,
        *,
        resolver: IdentifierResolver | None = None,
        staged: StagedTransferClient | None = None,
        poller: ReadinessPoller | None = None,
        reconciler: MediaReconciler | None = None,
        progress: Any | None = None,
    ) -> None:
        self._client = client
        self._config = config
        self._resolver = resolver or IdentifierResolver(client, config.resolution_policy)
        self._owns_staged = staged is None
        self._staged = staged or StagedTransferClient(client, config)
        self._poller = poller or ReadinessPoller(client)
        self._reconciler = reconciler or MediaReconciler(client, self._poller, config)
        self._progress = progress

        self._semaphore = asyncio.Semaphore(config.max_concurrency)
        self._entity_locks = KeyedLock()
        self._shutdown_event = asyncio.Event()

        # entity_id -> product-level ref of every entity that got a new asset
        self._touched: dict[str, EntityRef] = {}
        self._created: dict[str, list[MediaAsset]] = {}

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def setup_signal_handlers(self) -> None:
        """Register SIGINT/SIGTERM handlers for graceful shutdown.

        First signal sets the shutdown event (files not yet started are
        skipped, in-flight files finish). Second signal forces immediate exit.
        """
        self._signal_count = 0

        def _handler(signum: int, frame: Any) -> None:
            self._signal_count += 1
            if self._signal_count == 1:
                logger.warning("Graceful shutdown initiated, finishing in-flight files...")
                self._shutdown_event.set()
            else:
                logger.warning("Forced shutdown. Exiting immediately.")
                raise SystemExit(1)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except (OSError, ValueError):
            # signal handlers can only be set in main thread
            logger.debug("Could not set signal handlers (not main thread)")

    def request_shutdown(self) -> None:
        """Stop starting new files; in-flight files run to completion."""
        self._shutdown_event.set()

    def _on_run_timeout(self) -> None:
        logger.warning(
            "Run timeout of %.0fs reached; no new files will start",
            self._config.run_timeout_seconds,
        )
        self._shutdown_event.set()

    async def close(self) -> None:
        """Close the staged transfer client if this orchestrator created it."""
        if self._owns_staged:
            await self._staged.close()

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def run(self, files: Sequence[LocalFile]) -> BatchReport:
        """Process *files* and return results in input order.

        1. Run every file through the pipeline, at most ``max_concurrency``
           at a time
        2. Reorder the media of every entity the batch touched
        3. Return the report
        """
        logger.info(
            "Processing %d file(s) (concurrency=%d, policy=%s, dry_run=%s)",
            len(files),
            self._config.max_concurrency,
            self._config.resolution_policy.value,
            self._config.dry_run,
        )

        timer: asyncio.TimerHandle | None = None
        if self._config.run_timeout_seconds is not None:
            loop = asyncio.get_running_loop()
            timer = loop.call_later(self._config.run_timeout_seconds, self._on_run_timeout)

        try:
            results = await asyncio.gather(*(self._process_file(f) for f in files))
        finally:
            if timer is not None:
                timer.cancel()

        reorders = await self._reorder_touched()
        report = BatchReport(results=list(results), reorders=reorders)
        logger.info("Batch complete: %s", report.summary)
        return report

    # ------------------------------------------------------------------
    # Per-file unit
    # ------------------------------------------------------------------

    async def _process_file(self, file: LocalFile) -> BatchResult:
        async with self._semaphore:
            if self._shutdown_event.is_set():
                result = BatchResult(
                    filename=file.basename,
                    status=StatusTag.SKIPPED,
                    detail="run stopped before this file started",
                    attempts=0,
                )
            else:
                if self._progress is not None:
                    self._progress.file_started(file.basename)
                run = FileRun(file)
                try:
                    result = await self._run_with_retries(run)
                finally:
                    self._staged.discard(run.targets)

        entity = f" -> {result.entity_id}" if result.entity_id else ""
        if result.status.succeeded or result.status is StatusTag.SKIPPED:
            logger.info("%s: %s%s", result.status.value, result.filename, entity)
        else:
            logger.error("%s: %s%s (%s)", result.status.value, result.filename, entity, result.detail)
        if self._progress is not None:
            self._progress.file_done(result)
        return result

    async def _run_with_retries(self, run: FileRun) -> BatchResult:
        """Run the pipeline for one file, retrying transient failures.

        Every attempt starts from resolution and requests a fresh staged
        target. After the last attempt the final error is mapped to a
        status tag.
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._config.file_retries + 1),
                wait=wait_exponential(multiplier=self._config.retry_backoff_seconds, max=30),
                retry=retry_if_exception_type(_RETRYABLE),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    return await self._attempt(run)
        except Exception as exc:
            return self._failure(run, exc)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _attempt(self, run: FileRun) -> BatchResult:
        run.attempts += 1
        run.registration_rejected = False
        run.notes.clear()
        run.errors.clear()
        if run.fsm.current_state_value == "failed":
            run.fsm.retry()
        try:
            return await self._pipeline(run)
        except Exception:
            run.failed_stage = run.fsm.current_state_value
            run.fsm.fail()
            raise

    async def _pipeline(self, run: FileRun) -> BatchResult:
        file = run.file
        fsm = run.fsm

        fsm.resolve()
        slot = parse_slot_label(file.basename)
        entity = await self._resolver.resolve(slot)
        run.entity = entity

        if self._config.dry_run:
            fsm.finish()
            return self._result(
                run,
                StatusTag.MATCHED,
                detail=f"slot {slot.token} -> {entity.entity_title or entity.entity_id}",
            )

        alt_label = build_alt_label(entity, slot)

        async with self._entity_locks.hold(entity.entity_id):
            fsm.clear()
            deleted, delete_errors = await self._reconciler.clear_slot(entity, slot, file, alt_label)
            run.replaced += deleted
            if delete_errors:
                run.notes.append("could not delete existing media")
                run.errors.extend(delete_errors)

            fsm.stage()
            target = await self._staged.request_target(file)
            run.targets.append(target)

            fsm.transfer()
            if not await self._staged.transfer(target, file):
                raise TransferError(f"Transfer of {file.basename} to staged storage failed")

            registered, readiness = await self._register(run, target, alt_label)

            fsm.attach()
            try:
                asset = await self._reconciler.attach(
                    entity, target, registered, alt_label, file.media_class
                )
            except AttachError as exc:
                if run.registration_rejected:
                    raise RegistrationError(str(exc), run.errors + list(exc.messages)) from exc
                raise
            if readiness is Readiness.READY:
                asset = replace(asset, status=MediaStatus.READY)
            self._touch(entity)
            self._created.setdefault(entity.entity_id, []).append(asset)

            link = VariantLink.NOT_APPLICABLE
            if entity.is_variant_scoped and slot.is_featured:
                fsm.link()
                link, link_errors = await self._reconciler.link_variant(entity, asset, readiness)
                if link is VariantLink.SKIPPED_NOT_READY:
                    run.notes.append("variant link skipped: media not ready")
                elif link is VariantLink.FAILED:
                    run.notes.append("variant link failed")
                run.errors.extend(link_errors)

            fsm.finish()

        status = StatusTag.REPLACED if run.replaced else StatusTag.OK
        return self._result(
            run,
            status,
            detail="; ".join(run.notes) or None,
            media_id=asset.id,
            variant_link=link,
        )

    async def _register(
        self, run: FileRun, target: StagedTarget, alt_label: str
    ) -> tuple[MediaAsset | None, Readiness | None]:
        """Register the staged bytes and wait for processing.

        Videos are always registered; images only with ``register_images``.
        A rejected registration or a FAILED asset falls back to attaching by
        staged resource URL.
        """
        file = run.file
        if file.media_class is MediaClass.IMAGE and not self._config.register_images:
            return None, None

        run.fsm.register_file()
        try:
            registered = await self._staged.register_resource(
                target.resource_url, file.media_class, alt_label
            )
        except RegistrationError as exc:
            logger.warning("Registration of %s rejected: %s", file.basename, exc.messages)
            run.registration_rejected = True
            run.notes.append("registration rejected, attached by source")
            run.errors.extend(exc.messages)
            return None, None

        run.fsm.await_ready()
        interval, timeout = self._config.poll_settings(file.media_class)
        readiness = await self._poller.wait(registered.id, interval, timeout)

        if readiness is Readiness.TIMEOUT:
            if not self._config.optimistic_attach:
                raise ReadinessTimeout(
                    f"{registered.id} not ready after {timeout:.0f}s", (registered.id,)
                )
            run.notes.append(f"not ready after {timeout:.0f}s, attached optimistically")
        elif readiness is Readiness.FAILED:
            run.notes.append("processing failed, attached by source")
            return None, readiness
        return registered, readiness

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _result(self, run: FileRun, status: StatusTag, **kwargs: Any) -> BatchResult:
        return BatchResult(
            filename=run.file.basename,
            status=status,
            entity_id=run.entity.entity_id if run.entity else None,
            errors=tuple(run.errors),
            attempts=run.attempts,
            **kwargs,
        )

    def _failure(self, run: FileRun, exc: Exception) -> BatchResult:
        status = StatusTag.ERROR
        for error_type, tag in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                status = tag
                break

        if isinstance(exc, MediaSyncError):
            messages = list(exc.messages)
        else:
            logger.debug("Unexpected failure for %s", run.file.basename, exc_info=exc)
            messages = [f"{type(exc).__name__}: {exc}"]
        errors = run.errors + [m for m in messages if m not in run.errors]

        stage = f"{run.failed_stage}: " if run.failed_stage else ""
        return BatchResult(
            filename=run.file.basename,
            status=status,
            entity_id=run.entity.entity_id if run.entity else None,
            detail=f"{stage}{exc}",
            errors=tuple(errors),
            attempts=run.attempts,
        )

    # ------------------------------------------------------------------
    # Batch-end reorder
    # ------------------------------------------------------------------

    def _touch(self, entity: EntityRef) -> None:
        self._touched.setdefault(
            entity.entity_id, EntityRef(entity.entity_id, entity.entity_title)
        )

    async def _reorder_touched(self) -> list[ReorderResult]:
        entities = list(self._touched.values())
        if not entities:
            return []
        logger.info("Reordering media for %d entity(ies)", len(entities))
        if self._progress is not None:
            self._progress.start_reorder(len(entities))
        return list(await asyncio.gather(*(self._reorder_entity(e) for e in entities)))

    async def _reorder_entity(self, entity: EntityRef) -> ReorderResult:
        async with self._semaphore:
            async with self._entity_locks.hold(entity.entity_id):
                try:
                    result = await self._reconciler.reorder(
                        entity, self._created.get(entity.entity_id, [])
                    )
                except Exception as exc:
                    logger.error("Reorder failed for %s: %s", entity.entity_id, exc)
                    result = ReorderResult(
                        entity.entity_id, "failed", errors=(f"{type(exc).__name__}: {exc}",)
                    )
        if self._progress is not None:
            self._progress.entity_reordered(result)
        return result
