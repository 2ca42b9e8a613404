"""Tests for siteassets.lifecycle.manager.LifecycleManager.

Covers:
- claim: move, URL rewrite, partial failure, leftover sources, re-runs,
  non-conforming listing entries, listing failure, pagination
- duplicate: copy without deleting, same-site refusal
- sweep_orphans: only dereferenced paths of the site, idempotent
- sweep_expired: validation before I/O, per-preview listing failures
- sweep_site: listing plus referenced paths
- delete_image: URL or path, cross-tenant refusal
- metrics
"""

from __future__ import annotations

import dataclasses

import pytest

from siteassets.errors import (
    ErrorCode,
    InvalidInputError,
    PathTraversalError,
    SecurityViolationError,
    TransientIOError,
)
from siteassets.lifecycle import LifecycleManager
from siteassets.models import AssetState

PREVIEW_ID = "11111111-1111-4111-8111-111111111111"
SITE_ID = "22222222-2222-4222-8222-222222222222"
OTHER_SITE_ID = "33333333-3333-4333-8333-333333333333"
FOLDER_ID = "44444444-4444-4444-8444-444444444444"
PREVIEW_2 = "55555555-5555-4555-8555-555555555555"

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"
JPEG_BYTES = b"\xff\xd8\xff\xe0fake"


@pytest.fixture
def manager(store, config) -> LifecycleManager:
    return LifecycleManager(store, config)


def pv(name: str, preview_id: str = PREVIEW_ID) -> str:
    return f"temp-preview/{preview_id}/{name}"


def st(name: str, site_id: str = SITE_ID, folder_id: str | None = None) -> str:
    return f"{site_id}/{folder_id or site_id}/{name}"


# =========================================================================
# claim
# =========================================================================

class TestClaim:

    async def test_moves_and_rewrites(self, manager, store):
        store.put(pv("a.jpg"), JPEG_BYTES)
        store.put(pv("b.png"), PNG_BYTES, content_type="application/octet-stream")
        doc = {
            "hero": store.public_url(pv("a.jpg")),
            "gallery": [store.public_url(pv("b.png")), "https://cdn.example.com/x.jpg"],
        }

        result = await manager.claim(PREVIEW_ID, SITE_ID, doc)

        moved_a = st("a.jpg", folder_id=PREVIEW_ID)
        moved_b = st("b.png", folder_id=PREVIEW_ID)
        assert store.paths_under("temp-preview/") == []
        assert store.paths_under(f"{SITE_ID}/") == sorted([moved_a, moved_b])
        assert store.objects[moved_b] == (PNG_BYTES, "image/png")
        assert result.updated_doc == {
            "hero": store.public_url(moved_a),
            "gallery": [store.public_url(moved_b), "https://cdn.example.com/x.jpg"],
        }
        assert result.url_map[store.public_url(pv("a.jpg"))] == store.public_url(moved_a)
        assert result.report.ok
        assert {o.state for o in result.report.succeeded} == {AssetState.INGESTED_SITE}
        assert not any(o.source_retained for o in result.report.succeeded)
        assert doc["hero"] == store.public_url(pv("a.jpg"))

    async def test_partial_failure_keeps_failed_source(self, manager, store):
        for name in ("a.jpg", "b.jpg", "c.jpg"):
            store.put(pv(name), JPEG_BYTES)
        store.fail_download.add(pv("b.jpg"))
        doc = {"images": [store.public_url(pv(n)) for n in ("a.jpg", "b.jpg", "c.jpg")]}

        result = await manager.claim(PREVIEW_ID, SITE_ID, doc)

        assert result.report.succeeded_count == 2
        assert result.report.failed_count == 1
        failure = result.report.failed[0]
        assert failure.path == pv("b.jpg")
        assert failure.code == ErrorCode.TRANSIENT_IO
        assert store.paths_under("temp-preview/") == [pv("b.jpg")]
        assert result.updated_doc["images"][1] == store.public_url(pv("b.jpg"))
        assert result.updated_doc["images"][0] == store.public_url(st("a.jpg", folder_id=PREVIEW_ID))

    async def test_upload_failure_recorded(self, manager, store):
        store.put(pv("a.jpg"))
        store.fail_upload.add(st("a.jpg", folder_id=PREVIEW_ID))
        result = await manager.claim(PREVIEW_ID, SITE_ID, {})
        assert result.report.failed_count == 1
        assert store.paths_under("temp-preview/") == [pv("a.jpg")]

    async def test_rerun_finishes_the_move(self, manager, store):
        store.put(pv("a.jpg"))
        store.put(pv("b.jpg"))
        store.fail_download.add(pv("b.jpg"))
        doc = {"i": [store.public_url(pv("a.jpg")), store.public_url(pv("b.jpg"))]}

        first = await manager.claim(PREVIEW_ID, SITE_ID, doc)
        store.fail_download.clear()
        second = await manager.claim(PREVIEW_ID, SITE_ID, first.updated_doc)

        assert second.report.succeeded_count == 1
        assert store.paths_under("temp-preview/") == []
        assert second.updated_doc["i"] == [
            store.public_url(st("a.jpg", folder_id=PREVIEW_ID)),
            store.public_url(st("b.jpg", folder_id=PREVIEW_ID)),
        ]

    async def test_source_removal_failure_still_succeeds(self, manager, store):
        store.put(pv("a.jpg"))
        store.fail_remove = True
        result = await manager.claim(PREVIEW_ID, SITE_ID, {})
        assert result.report.succeeded_count == 1
        assert pv("a.jpg") in store.objects
        assert st("a.jpg", folder_id=PREVIEW_ID) in store.objects
        [outcome] = result.report.succeeded
        assert outcome.source_retained is True
        assert outcome.source == pv("a.jpg")

    async def test_non_conforming_entries_reported_and_left(self, manager, store):
        store.put(pv("a.jpg"))
        store.put(pv("notes.txt"))
        store.put(pv(".emptyFolderPlaceholder"))
        store.put(pv(f"{FOLDER_ID}/nested.jpg"))

        result = await manager.claim(PREVIEW_ID, SITE_ID, {})

        assert result.report.succeeded_count == 1
        failed = {f.path for f in result.report.failed}
        assert failed == {pv("notes.txt"), pv(f"{FOLDER_ID}/")}
        assert all(f.code == ErrorCode.PATH_TRAVERSAL for f in result.report.failed)
        assert pv("notes.txt") in store.objects
        assert pv(".emptyFolderPlaceholder") in store.objects

    async def test_listing_failure_propagates(self, manager, store):
        store.fail_list.add(f"temp-preview/{PREVIEW_ID}")
        with pytest.raises(TransientIOError):
            await manager.claim(PREVIEW_ID, SITE_ID, {})

    async def test_invalid_ids_rejected_before_io(self, manager, store):
        store.fail_list.add("anything")
        with pytest.raises(InvalidInputError):
            await manager.claim("../etc", SITE_ID, {})
        with pytest.raises(InvalidInputError):
            await manager.claim(PREVIEW_ID, "temp-preview", {})

    async def test_empty_preview(self, manager):
        result = await manager.claim(PREVIEW_ID, SITE_ID, {"a": 1})
        assert result.updated_doc == {"a": 1}
        assert result.report.ok
        assert result.url_map == {}

    async def test_pagination(self, store, config):
        manager = LifecycleManager(store, dataclasses.replace(config, list_limit=2))
        for i in range(5):
            store.put(pv(f"{i}.jpg"))
        result = await manager.claim(PREVIEW_ID, SITE_ID, None)
        assert result.report.succeeded_count == 5
        assert result.updated_doc is None

    async def test_metrics(self, store, config, metrics):
        manager = LifecycleManager(store, dataclasses.replace(config, metrics=metrics))
        store.put(pv("a.jpg"))
        store.put(pv("b.jpg"))
        store.fail_download.add(pv("b.jpg"))
        await manager.claim(PREVIEW_ID, SITE_ID, {})
        outcomes = sorted(
            c["tags"]["outcome"] for c in metrics.increments
            if c["name"] == "siteassets.lifecycle_objects_total"
        )
        assert outcomes == ["failed", "succeeded"]


# =========================================================================
# duplicate
# =========================================================================

class TestDuplicate:

    async def test_copies_every_folder(self, manager, store):
        store.put(st("a.jpg"))
        store.put(st("b.png", folder_id=FOLDER_ID), PNG_BYTES)
        doc = {"x": store.public_url(st("a.jpg")), "y": store.public_url(st("b.png", folder_id=FOLDER_ID))}

        result = await manager.duplicate(SITE_ID, OTHER_SITE_ID, doc)

        assert st("a.jpg") in store.objects
        assert st("a.jpg", OTHER_SITE_ID, SITE_ID) in store.objects
        assert st("b.png", OTHER_SITE_ID, FOLDER_ID) in store.objects
        assert result.updated_doc == {
            "x": store.public_url(st("a.jpg", OTHER_SITE_ID, SITE_ID)),
            "y": store.public_url(st("b.png", OTHER_SITE_ID, FOLDER_ID)),
        }
        assert result.report.succeeded_count == 2
        assert store.removes == []

    async def test_legacy_files_reported(self, manager, store):
        store.put(f"{SITE_ID}/legacy.jpg")
        store.put(st("a.jpg"))
        result = await manager.duplicate(SITE_ID, OTHER_SITE_ID, {})
        assert result.report.succeeded_count == 1
        assert [f.path for f in result.report.failed] == [f"{SITE_ID}/legacy.jpg"]

    async def test_copy_failure(self, manager, store):
        store.put(st("a.jpg"))
        store.fail_upload.add(st("a.jpg", OTHER_SITE_ID, SITE_ID))
        result = await manager.duplicate(SITE_ID, OTHER_SITE_ID, {})
        assert result.report.failed_count == 1
        assert result.url_map == {}

    async def test_same_site_refused(self, manager):
        with pytest.raises(InvalidInputError):
            await manager.duplicate(SITE_ID, SITE_ID.upper(), {})


# =========================================================================
# sweep_orphans
# =========================================================================

class TestSweepOrphans:

    async def test_deletes_only_dereferenced_paths_of_the_site(self, manager, store):
        for path in (st("a.jpg"), st("b.jpg"), st("c.jpg", OTHER_SITE_ID)):
            store.put(path)
        old = {"imgs": [store.public_url(p) for p in (st("a.jpg"), st("b.jpg"), st("c.jpg", OTHER_SITE_ID))]}
        new = {"imgs": [store.public_url(st("b.jpg"))]}

        result = await manager.sweep_orphans(SITE_ID, old, new)

        assert result.deleted_count == 1
        assert st("a.jpg") not in store.objects
        assert st("b.jpg") in store.objects
        assert st("c.jpg", OTHER_SITE_ID) in store.objects
        assert result.report.succeeded[0].state is AssetState.DELETED

    async def test_idempotent(self, manager, store):
        store.put(st("a.jpg"))
        old = {"i": store.public_url(st("a.jpg"))}
        first = await manager.sweep_orphans(SITE_ID, old, {})
        second = await manager.sweep_orphans(SITE_ID, old, {})
        assert first.deleted_count == 1
        assert second.deleted_count == 0
        assert second.report.ok
        assert second.report.succeeded == []

    async def test_no_old_document(self, manager, store):
        store.put(st("a.jpg"))
        result = await manager.sweep_orphans(SITE_ID, None, {})
        assert result.deleted_count == 0
        assert store.removes == []

    async def test_query_string_ignored(self, manager, store):
        store.put(st("a.jpg"))
        old = {"i": store.public_url(st("a.jpg")) + "?width=300"}
        new = {"i": store.public_url(st("a.jpg"))}
        result = await manager.sweep_orphans(SITE_ID, old, new)
        assert result.deleted_count == 0

    async def test_traversal_references_never_deleted(self, manager, store):
        victim = st("c.jpg", OTHER_SITE_ID)
        store.put(victim)
        old = {"i": store.public_url(f"{SITE_ID}/../{victim}")}
        result = await manager.sweep_orphans(SITE_ID, old, {})
        assert result.deleted_count == 0
        assert victim in store.objects

    async def test_remove_failure_reported(self, manager, store):
        store.put(st("a.jpg"))
        store.fail_remove = True
        result = await manager.sweep_orphans(SITE_ID, {"i": store.public_url(st("a.jpg"))}, {})
        assert result.deleted_count == 0
        assert result.report.failed[0].path == st("a.jpg")

    async def test_batches(self, store, config, metrics):
        manager = LifecycleManager(store, dataclasses.replace(config, remove_batch_size=2, metrics=metrics))
        paths = [st(f"{i}.jpg") for i in range(5)]
        for path in paths:
            store.put(path)
        result = await manager.sweep_orphans(SITE_ID, {"i": [store.public_url(p) for p in paths]}, {})
        assert result.deleted_count == 5
        assert [len(batch) for batch in store.removes] == [2, 2, 1]
        assert {"name": "siteassets.gc_deleted_total", "value": 5,
                "tags": {"op": "sweep_orphans"}} in metrics.increments


# =========================================================================
# sweep_expired
# =========================================================================

class TestSweepExpired:

    async def test_deletes_every_expired_preview(self, manager, store):
        store.put(pv("a.jpg"))
        store.put(pv("b.jpg"))
        store.put(pv("c.jpg", PREVIEW_2))
        store.put(st("keep.jpg"))

        result = await manager.sweep_expired([PREVIEW_ID, PREVIEW_2])

        assert result.deleted_count == 3
        assert store.paths_under("temp-preview/") == []
        assert st("keep.jpg") in store.objects

    async def test_invalid_id_rejected_before_io(self, manager, store):
        store.put(pv("a.jpg"))
        with pytest.raises(InvalidInputError):
            await manager.sweep_expired([PREVIEW_ID, "../../"])
        assert pv("a.jpg") in store.objects
        assert store.removes == []

    async def test_listing_failure_isolated(self, manager, store):
        store.put(pv("a.jpg"))
        store.put(pv("b.jpg", PREVIEW_2))
        store.fail_list.add(f"temp-preview/{PREVIEW_ID}")

        result = await manager.sweep_expired([PREVIEW_ID, PREVIEW_2])

        assert result.deleted_count == 1
        assert [f.path for f in result.report.failed] == [f"temp-preview/{PREVIEW_ID}"]
        assert pv("a.jpg") in store.objects

    async def test_nothing_expired(self, manager, store):
        result = await manager.sweep_expired([])
        assert result.deleted_count == 0
        assert store.removes == []


# =========================================================================
# sweep_site
# =========================================================================

class TestSweepSite:

    async def test_deletes_whole_namespace(self, manager, store):
        store.put(st("a.jpg"))
        store.put(st("b.jpg", folder_id=FOLDER_ID))
        store.put(st("c.jpg", OTHER_SITE_ID))
        result = await manager.sweep_site(SITE_ID)
        assert result.deleted_count == 2
        assert store.paths_under(f"{SITE_ID}/") == []
        assert st("c.jpg", OTHER_SITE_ID) in store.objects

    async def test_listing_failure_falls_back_to_document(self, manager, store):
        store.put(st("a.jpg"))
        store.put(st("b.jpg"))
        store.fail_list.add(SITE_ID)
        doc = {"i": [store.public_url(st("a.jpg")), store.public_url(st("x.jpg", OTHER_SITE_ID))]}

        result = await manager.sweep_site(SITE_ID, doc)

        assert result.deleted_count == 1
        assert st("b.jpg") in store.objects
        assert result.report.failed[0].path == f"{SITE_ID}/"


# =========================================================================
# delete_image
# =========================================================================

class TestDeleteImage:

    async def test_by_url_then_gone(self, manager, store):
        store.put(st("a.jpg"))
        assert await manager.delete_image(SITE_ID, store.public_url(st("a.jpg"))) is True
        assert await manager.delete_image(SITE_ID, st("a.jpg")) is False

    async def test_cross_tenant_refused(self, manager, store):
        victim = st("a.jpg", OTHER_SITE_ID)
        store.put(victim)
        with pytest.raises(SecurityViolationError):
            await manager.delete_image(SITE_ID, store.public_url(victim))
        assert victim in store.objects
        assert store.removes == []

    async def test_preview_path_refused(self, manager, store):
        with pytest.raises(SecurityViolationError):
            await manager.delete_image(SITE_ID, pv("a.jpg"))

    async def test_traversal(self, manager):
        with pytest.raises(PathTraversalError):
            await manager.delete_image(SITE_ID, "../../etc/passwd")

    async def test_folder_refused(self, manager):
        with pytest.raises(InvalidInputError):
            await manager.delete_image(SITE_ID, f"{SITE_ID}/{SITE_ID}")
