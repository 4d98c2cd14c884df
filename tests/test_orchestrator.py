"""End-to-end tests for BatchOrchestrator against the fake catalog.

Covers the documented scenarios (match, replace, no match, staged upload
rejection, readiness timeout), retry with a fresh staged target, the
concurrency bound, per-entity serialization, ordering, dry run and
shutdown.
"""

from __future__ import annotations

from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest

from mediasync.models import MediaAsset, MediaClass, MediaStatus, StatusTag, VariantLink
from mediasync.upload.client import PermanentError
from mediasync.upload.orchestrator import BatchOrchestrator
from mediasync.upload.staged import StagedTransferClient

MUTATIONS = {
    "create_staged_target",
    "register_resource",
    "delete_media",
    "attach_by_source",
    "attach_by_id",
    "set_variant_media",
    "reorder",
}


def _orchestrator(catalog, config, storage_http, **kwargs) -> BatchOrchestrator:
    staged = StagedTransferClient(catalog, config, http_client=storage_http)
    return BatchOrchestrator(catalog, config, staged=staged, **kwargs)


def _asset(media_id: str, alt: str = "Linen Shirt") -> MediaAsset:
    return MediaAsset(media_id, MediaClass.IMAGE, alt_label=alt, status=MediaStatus.READY)


# ======================================================================
# Scenarios
# ======================================================================


class TestScenarios:
    """The documented single-file scenarios."""

    async def test_a_new_image_attached(self, catalog, upload_config, storage, storage_http, make_file):
        """A matching file is staged, transferred and attached with the title as alt."""
        entity_id = catalog.add_product("7001", "Linen Shirt")

        report = await _orchestrator(catalog, upload_config, storage_http).run([make_file("7001.jpg")])

        result = report.results[0]
        assert result.status is StatusTag.OK
        assert result.entity_id == entity_id
        assert result.attempts == 1
        assert result.media_id is not None
        assert catalog.alts(entity_id) == ["Linen Shirt"]
        assert len(catalog.targets) == 1
        assert len(storage.requests) == 1
        assert report.ok == 1 and report.failed == 0

    async def test_b_rerun_replaces(self, catalog, upload_config, storage_http, make_file):
        """Re-running the same file replaces the asset instead of duplicating it."""
        entity_id = catalog.add_product("7001", "Linen Shirt")
        file = make_file("7001.jpg")

        first = await _orchestrator(catalog, upload_config, storage_http).run([file])
        second = await _orchestrator(catalog, upload_config, storage_http).run([file])

        assert first.results[0].status is StatusTag.OK
        assert second.results[0].status is StatusTag.REPLACED
        assert catalog.alts(entity_id) == ["Linen Shirt"]
        assert catalog.media[entity_id][0].id == second.results[0].media_id

    async def test_c_no_match_mutates_nothing(self, catalog, upload_config, storage, storage_http, make_file):
        """An unresolvable key is recorded without any remote mutation."""
        report = await _orchestrator(catalog, upload_config, storage_http).run([make_file("9999.jpg")])

        assert report.results[0].status is StatusTag.NO_MATCH
        assert report.results[0].attempts == 1
        assert not MUTATIONS & {op for op, _ in catalog.calls}
        assert storage.requests == []
        assert report.reorders == []

    async def test_d_staged_upload_error(self, catalog, upload_config, storage_http, make_file):
        """Target creation errors are reported verbatim and not retried."""
        catalog.add_product("7001", "Linen Shirt")
        catalog.staged_errors = ("File size is too large",)

        report = await _orchestrator(catalog, upload_config, storage_http).run([make_file("7001.jpg")])

        result = report.results[0]
        assert result.status is StatusTag.STAGED_UPLOAD_ERROR
        assert result.errors == ("File size is too large",)
        assert result.detail.startswith("staging:")
        assert len(catalog.ops("create_staged_target")) == 1

    async def test_e_video_timeout_attaches_optimistically(
        self, catalog, upload_config, storage_http, make_file
    ):
        """A video that never becomes ready is still attached."""
        entity_id = catalog.add_product("7001", "Linen Shirt")
        catalog.default_status = MediaStatus.PENDING

        report = await _orchestrator(catalog, upload_config, storage_http).run(
            [make_file("7001.mp4", mime_type="video/mp4")]
        )

        result = report.results[0]
        assert result.status is StatusTag.OK
        assert "not ready" in result.detail
        assert len(catalog.ops("register_resource")) == 1
        assert catalog.ops("attach_by_id") == [entity_id]

    async def test_e_video_timeout_then_attach_failure(
        self, catalog, upload_config, storage_http, make_file
    ):
        """When every attach path fails after a timeout the file is attach_failed."""
        catalog.add_product("7001", "Linen Shirt")
        catalog.default_status = MediaStatus.PENDING
        catalog.attach_id_errors = ("Media is still processing",)
        catalog.attach_source_errors = ("Invalid originalSource",)

        report = await _orchestrator(catalog, upload_config, storage_http).run(
            [make_file("7001.mp4", mime_type="video/mp4")]
        )

        result = report.results[0]
        assert result.status is StatusTag.ATTACH_FAILED
        assert result.errors == ("Media is still processing", "Invalid originalSource")


# ======================================================================
# Media class and registration variants
# ======================================================================


class TestRegistration:
    """Tests for registration, readiness and abort-on-timeout handling."""

    async def test_abort_on_timeout(self, catalog, upload_config, storage_http, make_file):
        """With optimistic attach off, a timeout fails the file before attaching."""
        catalog.add_product("7001", "Linen Shirt")
        catalog.default_status = MediaStatus.PENDING
        config = replace(upload_config, optimistic_attach=False)

        report = await _orchestrator(catalog, config, storage_http).run(
            [make_file("7001.mp4", mime_type="video/mp4")]
        )

        assert report.results[0].status is StatusTag.TIMEOUT
        assert catalog.ops("attach_by_id") == []
        assert catalog.ops("attach_by_source") == []

    async def test_rejected_registration_attaches_by_source(
        self, catalog, upload_config, storage_http, make_file
    ):
        catalog.add_product("7001", "Linen Shirt")
        catalog.register_errors = ("Unsupported video codec",)

        report = await _orchestrator(catalog, upload_config, storage_http).run(
            [make_file("7001.mp4", mime_type="video/mp4")]
        )

        result = report.results[0]
        assert result.status is StatusTag.OK
        assert "registration rejected" in result.detail
        assert result.errors == ("Unsupported video codec",)
        assert len(catalog.ops("attach_by_source")) == 1

    async def test_rejected_registration_and_attach(self, catalog, upload_config, storage_http, make_file):
        """Registration rejected and no fallback left: registration_failed."""
        catalog.add_product("7001", "Linen Shirt")
        catalog.register_errors = ("Unsupported video codec",)
        catalog.attach_source_errors = ("Invalid originalSource",)

        report = await _orchestrator(catalog, upload_config, storage_http).run(
            [make_file("7001.mp4", mime_type="video/mp4")]
        )

        result = report.results[0]
        assert result.status is StatusTag.REGISTRATION_FAILED
        assert "Unsupported video codec" in result.errors
        assert "Invalid originalSource" in result.errors

    async def test_images_skip_registration_by_default(self, catalog, upload_config, storage_http, make_file):
        catalog.add_product("7001", "Linen Shirt")
        await _orchestrator(catalog, upload_config, storage_http).run([make_file("7001.jpg")])
        assert catalog.ops("register_resource") == []

    async def test_register_images(self, catalog, upload_config, storage_http, make_file):
        entity_id = catalog.add_product("7001", "Linen Shirt")
        config = replace(upload_config, register_images=True)
        await _orchestrator(catalog, config, storage_http).run([make_file("7001.jpg")])
        assert len(catalog.ops("register_resource")) == 1
        assert catalog.ops("attach_by_id") == [entity_id]


# ======================================================================
# Retries
# ======================================================================


class TestRetries:
    """Tests for the per-file retry loop."""

    async def test_failed_transfer_gets_fresh_target(
        self, catalog, upload_config, storage, storage_http, make_file
    ):
        """A retry after a failed transfer requests a new staged target."""
        catalog.add_product("7001", "Linen Shirt")
        storage.fail_next = 1

        report = await _orchestrator(catalog, upload_config, storage_http).run([make_file("7001.jpg")])

        result = report.results[0]
        assert result.status is StatusTag.OK
        assert result.attempts == 2
        assert len(catalog.targets) == 2
        assert catalog.targets[0] != catalog.targets[1]
        assert len(storage.requests) == 2

    async def test_retries_exhausted(self, catalog, upload_config, storage, storage_http, make_file):
        catalog.add_product("7001", "Linen Shirt")
        storage.fail_next = 10

        report = await _orchestrator(catalog, upload_config, storage_http).run([make_file("7001.jpg")])

        result = report.results[0]
        assert result.status is StatusTag.TRANSFER_FAILED
        assert result.attempts == upload_config.file_retries + 1
        assert len(catalog.targets) == result.attempts

    async def test_permanent_error_not_retried(self, catalog, upload_config, storage_http, make_file):
        """Errors outside the retryable set end the file after one attempt."""
        catalog.lookup_by_key = AsyncMock(side_effect=PermanentError("401: Invalid API key"))

        report = await _orchestrator(catalog, upload_config, storage_http).run([make_file("7001.jpg")])

        result = report.results[0]
        assert result.status is StatusTag.ERROR
        assert result.attempts == 1
        assert "Invalid API key" in result.detail

    async def test_notes_reset_between_attempts(
        self, catalog, upload_config, storage, storage_http, make_file
    ):
        """Only the final attempt's notes and errors reach the result."""
        catalog.add_product("7001", "Linen Shirt", [_asset("gid://shopify/MediaImage/1")])
        catalog.delete_errors = ("cannot delete",)
        storage.fail_next = 1

        report = await _orchestrator(catalog, upload_config, storage_http).run([make_file("7001.jpg")])

        result = report.results[0]
        assert result.status is StatusTag.OK
        assert result.attempts == 2
        assert result.detail == "could not delete existing media"
        assert result.errors == ("cannot delete",)

    async def test_exhausted_retries_report_last_attempt(
        self, catalog, upload_config, storage, storage_http, make_file
    ):
        catalog.add_product("7001", "Linen Shirt", [_asset("gid://shopify/MediaImage/1")])
        catalog.delete_errors = ("cannot delete",)
        storage.fail_next = 10

        report = await _orchestrator(catalog, upload_config, storage_http).run([make_file("7001.jpg")])

        result = report.results[0]
        assert result.status is StatusTag.TRANSFER_FAILED
        assert result.attempts == upload_config.file_retries + 1
        assert result.errors.count("cannot delete") == 1

    async def test_consumed_targets_released_after_file(
        self, catalog, upload_config, storage, storage_http, make_file
    ):
        """Targets used by a finished file are no longer tracked."""
        catalog.add_product("7001", "Linen Shirt")
        storage.fail_next = 1
        staged = StagedTransferClient(catalog, upload_config, http_client=storage_http)

        report = await BatchOrchestrator(catalog, upload_config, staged=staged).run(
            [make_file("7001.jpg")]
        )

        assert report.results[0].attempts == 2
        assert staged._consumed == set()

    @pytest.mark.filterwarnings("error::DeprecationWarning:mediasync.*")
    async def test_retry_path_raises_no_deprecation_warning(
        self, catalog, upload_config, storage, storage_http, make_file
    ):
        """Failing and retrying the lifecycle uses only current state APIs."""
        catalog.add_product("7001", "Linen Shirt")
        storage.fail_next = 1

        report = await _orchestrator(catalog, upload_config, storage_http).run([make_file("7001.jpg")])

        assert report.results[0].status is StatusTag.OK


# ======================================================================
# Concurrency
# ======================================================================


class TestConcurrency:
    """Tests for the worker bound and per-entity serialization."""

    async def test_concurrency_bound(self, catalog, upload_config, storage, storage_http, make_file):
        storage.delay = 0.02
        files = []
        for n in range(6):
            catalog.add_product(f"80{n}", f"Product {n}")
            files.append(make_file(f"80{n}.jpg"))
        config = replace(upload_config, max_concurrency=2)

        report = await _orchestrator(catalog, config, storage_http).run(files)

        assert report.ok == 6
        assert storage.max_in_flight == 2

    async def test_same_entity_serialized(self, catalog, upload_config, storage, storage_http, make_file):
        """Pre-check and attach for one entity never interleave across files."""
        storage.delay = 0.02
        entity_id = catalog.add_product("7001", "Linen Shirt")

        report = await _orchestrator(catalog, upload_config, storage_http).run(
            [make_file("7001.jpg"), make_file("7001_1.jpg")]
        )

        assert report.ok == 2
        sequence = [op for op, _ in catalog.calls if op in ("list_media", "attach_by_source")][:4]
        assert sequence == ["list_media", "attach_by_source", "list_media", "attach_by_source"]
        assert sorted(catalog.alts(entity_id)) == ["Linen Shirt", "Linen Shirt (2)"]

    async def test_results_in_input_order(self, catalog, upload_config, storage, storage_http, make_file):
        storage.delay = 0.01
        catalog.add_product("7001", "Linen Shirt")
        catalog.add_product("7002", "Wool Shirt")
        names = ["7002.jpg", "9999.jpg", "7001.jpg"]

        report = await _orchestrator(catalog, upload_config, storage_http).run([make_file(n) for n in names])

        assert [r.filename for r in report.results] == names
        assert [r.status for r in report.results] == [StatusTag.OK, StatusTag.NO_MATCH, StatusTag.OK]


# ======================================================================
# Variants and ordering
# ======================================================================


class TestVariantsAndOrdering:
    """Tests for variant linking and the batch-end reorder."""

    async def test_sku_file_links_variant(self, catalog, upload_config, storage_http, make_file):
        entity_id = catalog.add_product("7001", "Linen Shirt")
        variant_id = catalog.add_variant(entity_id, "LS-RED", "Red")

        report = await _orchestrator(catalog, upload_config, storage_http).run([make_file("LS-RED.jpg")])

        result = report.results[0]
        assert result.status is StatusTag.OK
        assert result.variant_link is VariantLink.LINKED
        assert catalog.variant_media[variant_id] == [result.media_id]
        assert catalog.alts(entity_id) == ["Linen Shirt - Red"]

    async def test_variant_link_skipped_when_not_ready(
        self, catalog, upload_config, storage_http, make_file
    ):
        entity_id = catalog.add_product("7001", "Linen Shirt")
        catalog.add_variant(entity_id, "LS-RED", "Red")
        catalog.default_status = MediaStatus.PENDING

        report = await _orchestrator(catalog, upload_config, storage_http).run([make_file("LS-RED.jpg")])

        result = report.results[0]
        assert result.status is StatusTag.OK
        assert result.variant_link is VariantLink.SKIPPED_NOT_READY
        assert "variant link skipped" in result.detail

    async def test_entity_media_precede_variant_media(
        self, catalog, upload_config, storage_http, make_file
    ):
        entity_id = catalog.add_product("7001", "Linen Shirt")
        catalog.add_variant(entity_id, "LS-RED", "Red")
        files = [make_file("LS-RED.jpg"), make_file("7001_1.jpg"), make_file("7001.jpg")]

        report = await _orchestrator(catalog, upload_config, storage_http).run(files)

        assert report.ok == 3
        assert catalog.alts(entity_id) == ["Linen Shirt", "Linen Shirt (2)", "Linen Shirt - Red"]
        assert [r.entity_id for r in report.reorders] == [entity_id]
        assert report.reorders[0].status in ("reordered", "unchanged")

    async def test_failed_replacement_not_reordered(
        self, catalog, upload_config, storage_http, make_file
    ):
        """An entity whose old asset was deleted but got nothing new is left alone."""
        entity_id = catalog.add_product("7001", "Linen Shirt", [_asset("gid://shopify/MediaImage/1")])
        catalog.attach_source_errors = ("boom",)

        report = await _orchestrator(catalog, upload_config, storage_http).run([make_file("7001.jpg")])

        assert report.results[0].status is StatusTag.ATTACH_FAILED
        assert catalog.media[entity_id] == []
        assert report.reorders == []
        assert catalog.ops("reorder") == []
        assert catalog.ops("list_media") == [entity_id]


# ======================================================================
# Run control
# ======================================================================


class TestRunControl:
    """Tests for dry run, shutdown, run timeout and progress reporting."""

    async def test_dry_run_has_no_side_effects(self, catalog, upload_config, storage, storage_http, make_file):
        entity_id = catalog.add_product("7001", "Linen Shirt", [])
        config = replace(upload_config, dry_run=True)

        report = await _orchestrator(catalog, config, storage_http).run(
            [make_file("7001.jpg"), make_file("9999.jpg")]
        )

        assert [r.status for r in report.results] == [StatusTag.MATCHED, StatusTag.NO_MATCH]
        assert report.results[0].entity_id == entity_id
        assert not MUTATIONS & {op for op, _ in catalog.calls}
        assert catalog.ops("list_media") == []
        assert storage.requests == []

    async def test_shutdown_skips_unstarted_files(self, catalog, upload_config, storage_http, make_file):
        catalog.add_product("7001", "Linen Shirt")
        orchestrator = _orchestrator(catalog, upload_config, storage_http)
        orchestrator.request_shutdown()

        report = await orchestrator.run([make_file("7001.jpg"), make_file("7001_1.jpg")])

        assert [r.status for r in report.results] == [StatusTag.SKIPPED, StatusTag.SKIPPED]
        assert all(r.attempts == 0 for r in report.results)
        assert catalog.calls == []
        assert report.skipped == 2 and report.failed == 0

    async def test_run_timeout_lets_in_flight_finish(
        self, catalog, upload_config, storage, storage_http, make_file
    ):
        storage.delay = 0.05
        for key in ("7001", "7002", "7003"):
            catalog.add_product(key, f"Product {key}")
        config = replace(upload_config, max_concurrency=1, run_timeout_seconds=0.01)

        report = await _orchestrator(catalog, config, storage_http).run(
            [make_file("7001.jpg"), make_file("7002.jpg"), make_file("7003.jpg")]
        )

        assert [r.status for r in report.results] == [
            StatusTag.OK,
            StatusTag.SKIPPED,
            StatusTag.SKIPPED,
        ]

    async def test_progress_callbacks(self, catalog, upload_config, storage_http, make_file):
        catalog.add_product("7001", "Linen Shirt")
        progress = MagicMock()

        await _orchestrator(catalog, upload_config, storage_http, progress=progress).run(
            [make_file("7001.jpg"), make_file("9999.jpg")]
        )

        assert progress.file_done.call_count == 2
        progress.start_reorder.assert_called_once_with(1)
        assert progress.entity_reordered.call_count == 1


@pytest.mark.parametrize("retries", [0, 1])
async def test_retry_budget_follows_config(catalog, upload_config, storage, storage_http, make_file, retries):
    """file_retries sets the number of extra attempts."""
    catalog.add_product("7001", "Linen Shirt")
    storage.fail_next = 10
    config = replace(upload_config, file_retries=retries)

    report = await _orchestrator(catalog, config, storage_http).run([make_file("7001.jpg")])

    assert report.results[0].attempts == retries + 1
