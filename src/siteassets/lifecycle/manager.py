"""Asset lifecycle operations: claim, duplicate and garbage collection.

None of these operations is atomic.  Each object is handled on its own;
a failure is recorded in the returned
:class:`~siteassets.models.BatchReport` and the operation moves on to the
next object.  Every operation is safe to re-run: a second pass only sees
the objects the first pass left behind.

Namespace layout::

    temp-preview/{previewId}/{file}     draft assets
    {siteId}/{folderId}/{file}          published assets

A claim keeps the folder id and swaps the tenant segment, so
``temp-preview/P/f`` becomes ``S/P/f``.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from siteassets.config import SiteAssetsConfig
from siteassets.document import extract_urls, rewrite_urls, storage_path_from_url
from siteassets.errors import (
    ErrorCode,
    InvalidInputError,
    SecurityViolationError,
    SiteAssetsError,
)
from siteassets.models import (
    AssetState,
    BatchReport,
    ItemFailure,
    ItemOutcome,
    LifecycleResult,
    StoragePath,
    StoreEntry,
    SweepResult,
)
from siteassets.observability import get_logger, log_security_event, resolve_metrics
from siteassets.security import (
    is_uuid,
    preview_folder,
    require_path,
    require_uuid,
    sanitize_path,
    sniff_format,
)
from siteassets.store import ObjectStore
from siteassets.utils import chunked

from .state import AssetStateMachine

log = get_logger("siteassets.lifecycle")

# Placeholder object some stores create to materialise empty folders.
_PLACEHOLDER_NAMES = frozenset({".emptyFolderPlaceholder"})


class LifecycleManager:
    """Move, copy and delete stored assets in response to site events.

    Parameters
    ----------
    store:
        The object store holding every tenant namespace.
    config:
        Supplies the public URL prefix, listing page size, remove batch
        size, ``Cache-Control`` and metrics hook.
    """

    def __init__(self, store: ObjectStore, config: SiteAssetsConfig) -> None:
        self._store = store
        self._config = config
        self._metrics = resolve_metrics(config.metrics)

    # ------------------------------------------------------------------
    # Move / copy
    # ------------------------------------------------------------------

    async def claim(self, preview_id: str, site_id: str, doc: Any) -> LifecycleResult:
        """Move every asset of a preview into a site and rewrite *doc*.

        Each object is downloaded, uploaded under the site, and only then
        deleted from the preview.  A crash between the upload and the
        delete leaves a duplicate, never a loss.

        Parameters
        ----------
        preview_id:
            The draft being claimed.
        site_id:
            The site it becomes.  The caller has authorized it.
        doc:
            The site configuration document referencing preview URLs.

        Returns
        -------
        LifecycleResult
            *doc* with every moved URL rewritten, the old-to-new URL map,
            and the per-object report.

        Raises
        ------
        InvalidInputError
            If either id is not a UUID.
        TransientIOError, StoreError
            If the preview folder cannot be listed.
        """
        folder = preview_folder(preview_id)
        require_uuid(site_id, "site_id")

        report = BatchReport()
        url_map: dict[str, str] = {}
        files = await self._list_folder(folder, report)

        for source, entry in files:
            target = require_path(str(source.rebase(site_id)), op="claim")
            machine = AssetStateMachine(str(source), AssetState.INGESTED_TEMP)
            machine.transition(AssetState.CLAIMED)

            if not await self._transfer(source, target, entry, machine, report, op="claim"):
                continue

            machine.transition(AssetState.INGESTED_SITE)
            url_map[self._store.public_url(str(source))] = self._store.public_url(str(target))

            retained = False
            try:
                await self._store.remove([str(source)])
            except SiteAssetsError as exc:
                retained = True
                # The copy is in place; the next claim or expiry sweep
                # removes the leftover source.
                log.warning(
                    "Claimed object copied but source not removed",
                    extra={
                        "extra_fields": {
                            "op": "claim",
                            "path": str(source),
                            "target": str(target),
                            "error_code": exc.code,
                            "error": exc.message,
                        }
                    },
                )

            report.succeeded.append(
                ItemOutcome(
                    source=str(source),
                    target=str(target),
                    state=machine.state,
                    source_retained=retained,
                )
            )

        return self._finish("claim", doc, url_map, report)

    async def duplicate(self, source_site_id: str, target_site_id: str, doc: Any) -> LifecycleResult:
        """Copy every asset of one site into another and rewrite *doc*.

        Identical to :meth:`claim` except that the sources are never
        deleted.

        Raises
        ------
        InvalidInputError
            If either id is not a UUID, or both are the same site.
        TransientIOError, StoreError
            If the source namespace cannot be listed.
        """
        require_uuid(source_site_id, "source_site_id")
        require_uuid(target_site_id, "target_site_id")
        if source_site_id.lower() == target_site_id.lower():
            raise InvalidInputError(
                message="Source and target site must differ",
                context={"field": "target_site_id", "value": target_site_id},
            )

        report = BatchReport()
        url_map: dict[str, str] = {}
        files = await self._list_namespace(source_site_id, report)

        for source, entry in files:
            target = require_path(str(source.rebase(target_site_id)), op="duplicate")
            machine = AssetStateMachine(str(target), AssetState.DUPLICATED)

            if not await self._transfer(source, target, entry, machine, report, op="duplicate"):
                continue

            machine.transition(AssetState.INGESTED_SITE)
            url_map[self._store.public_url(str(source))] = self._store.public_url(str(target))
            report.succeeded.append(
                ItemOutcome(source=str(source), target=str(target), state=machine.state)
            )

        return self._finish("duplicate", doc, url_map, report)

    # ------------------------------------------------------------------
    # Garbage collection
    # ------------------------------------------------------------------

    async def sweep_orphans(self, site_id: str, old_doc: Any, new_doc: Any) -> SweepResult:
        """Delete the site's images that *old_doc* referenced and *new_doc*
        no longer does.

        Only paths inside ``{site_id}/`` are ever deleted, whatever the
        documents contain.  With ``old_doc=None`` nothing is deleted.
        """
        require_uuid(site_id, "site_id")
        if old_doc is None:
            return SweepResult(deleted_count=0)

        before = self._referenced_paths(old_doc)
        after = self._referenced_paths(new_doc)
        orphans = sorted(
            path for path in before - after
            if _owned_by(path, site_id)
        )
        log.debug(
            "Orphan sweep computed",
            extra={
                "extra_fields": {
                    "op": "sweep_orphans",
                    "site_id": site_id,
                    "referenced_before": len(before),
                    "referenced_after": len(after),
                    "orphans": len(orphans),
                }
            },
        )
        return await self._delete(
            orphans,
            op="sweep_orphans",
            initial=AssetState.INGESTED_SITE,
            steps=(AssetState.DEREFERENCED, AssetState.ORPHAN_SWEPT),
        )

    async def sweep_expired(self, expired_preview_ids: Iterable[str]) -> SweepResult:
        """Delete every object under ``temp-preview/{id}`` for each expired id.

        All ids are validated before any store call.  A preview whose
        folder cannot be listed is reported and skipped.
        """
        folders = [preview_folder(pid) for pid in expired_preview_ids]

        report = BatchReport()
        paths: list[str] = []
        for folder in folders:
            try:
                files = await self._list_folder(folder, report)
            except SiteAssetsError as exc:
                report.failed.append(ItemFailure(path=folder.folder, reason=exc.message, code=exc.code))
                continue
            paths.extend(str(path) for path, _ in files)

        result = await self._delete(
            paths,
            op="sweep_expired",
            initial=AssetState.INGESTED_TEMP,
            steps=(AssetState.EXPIRED,),
        )
        report.merge(result.report)
        return SweepResult(deleted_count=result.deleted_count, report=report)

    async def sweep_site(self, site_id: str, doc: Any = None) -> SweepResult:
        """Delete every asset of a deleted site.

        The set removed is the union of the objects listed under
        ``{site_id}/`` and the site paths *doc* references.  If the listing
        fails, the referenced paths are still removed and the listing
        failure is reported.
        """
        require_uuid(site_id, "site_id")
        report = BatchReport()

        targets: set[str] = set()
        if doc is not None:
            targets.update(p for p in self._referenced_paths(doc) if _owned_by(p, site_id))
        try:
            files = await self._list_namespace(site_id, report)
        except SiteAssetsError as exc:
            report.failed.append(ItemFailure(path=f"{site_id}/", reason=exc.message, code=exc.code))
        else:
            targets.update(str(path) for path, _ in files)

        result = await self._delete(
            sorted(targets),
            op="sweep_site",
            initial=AssetState.INGESTED_SITE,
            steps=(AssetState.SITE_DELETED,),
        )
        report.merge(result.report)
        return SweepResult(deleted_count=result.deleted_count, report=report)

    async def delete_image(self, site_id: str, path_or_url: str) -> bool:
        """Delete one image of *site_id*, given its public URL or path.

        Returns
        -------
        bool
            ``True`` if an object was removed, ``False`` if it was already
            gone.

        Raises
        ------
        PathTraversalError
            If the path fails the storage grammar.
        SecurityViolationError
            If the path belongs to another tenant.
        InvalidInputError
            If *site_id* is not a UUID or the path names a folder.
        """
        require_uuid(site_id, "site_id")
        raw = storage_path_from_url(path_or_url, self._config.public_url_prefix) or path_or_url
        path = require_path(raw, op="delete_image")
        if path.filename is None:
            raise InvalidInputError(
                message="delete_image needs a file path, not a folder",
                context={"field": "path", "value": str(path)},
            )
        if not _owned_by(str(path), site_id):
            log_security_event(
                log,
                "Refused delete outside the caller's namespace",
                reason="cross_tenant",
                op="delete_image",
                site_id=site_id,
                path=str(path),
            )
            raise SecurityViolationError(
                message=f"Path {str(path)!r} is outside site {site_id}",
                context={"path": str(path), "namespace": site_id},
            )

        removed = await self._store.remove([str(path)])
        deleted = str(path) in removed
        self._metrics.increment(
            "siteassets.gc_deleted_total", value=int(deleted), tags={"op": "delete_image"}
        )
        log.info(
            "Image deleted" if deleted else "Image already absent",
            extra={"extra_fields": {"op": "delete_image", "path": str(path)}},
        )
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _referenced_paths(self, doc: Any) -> set[str]:
        """Storage paths in *doc* that pass the grammar, normalized."""
        paths: set[str] = set()
        for raw in extract_urls(doc, self._config.public_url_prefix):
            path = sanitize_path(raw)
            if path is not None and path.filename is not None:
                paths.add(str(path))
        return paths

    async def _list_all(self, prefix: str) -> list[StoreEntry]:
        limit = self._config.list_limit
        entries: list[StoreEntry] = []
        offset = 0
        while True:
            page = await self._store.list(prefix, limit=limit, offset=offset, sort_by="name")
            entries.extend(page)
            if len(page) < limit:
                return entries
            offset += limit

    async def _list_folder(
        self,
        folder: StoragePath,
        report: BatchReport,
    ) -> list[tuple[StoragePath, StoreEntry]]:
        """List the files of one ``tenant/id`` folder.

        Entries that do not form a valid path are reported as failures and
        left in place.
        """
        files: list[tuple[StoragePath, StoreEntry]] = []
        for entry in await self._list_all(folder.folder):
            if entry.name in _PLACEHOLDER_NAMES:
                continue
            raw = f"{folder.folder}/{entry.name}"
            path = None if entry.is_folder else sanitize_path(raw)
            if path is None or path.filename is None:
                report.failed.append(_grammar_failure(raw))
                continue
            files.append((path, entry))
        return files

    async def _list_namespace(
        self,
        tenant: str,
        report: BatchReport,
    ) -> list[tuple[StoragePath, StoreEntry]]:
        """List the files of every ``{tenant}/{id}`` folder."""
        files: list[tuple[StoragePath, StoreEntry]] = []
        for entry in await self._list_all(tenant):
            name = entry.name.rstrip("/")
            if name in _PLACEHOLDER_NAMES:
                continue
            if entry.is_folder and is_uuid(name):
                files.extend(await self._list_folder(StoragePath(tenant=tenant, folder_id=name), report))
            else:
                report.failed.append(_grammar_failure(f"{tenant}/{entry.name}"))
        return files

    async def _transfer(
        self,
        source: StoragePath,
        target: StoragePath,
        entry: StoreEntry,
        machine: AssetStateMachine,
        report: BatchReport,
        *,
        op: str,
    ) -> bool:
        """Download *source* and upload it to *target*.  Record a failure
        and return ``False`` if either step fails."""
        try:
            data = await self._store.download(str(source))
            detected = sniff_format(data)
            content_type = detected.mime if detected else (entry.content_type or "application/octet-stream")
            await self._store.upload(
                str(target),
                data,
                content_type=content_type,
                cache_control=self._config.cache_control,
                upsert=True,
            )
        except SiteAssetsError as exc:
            machine.transition(AssetState.FAILED)
            report.failed.append(ItemFailure(path=str(source), reason=exc.message, code=exc.code))
            self._metrics.increment(
                "siteassets.lifecycle_objects_total", tags={"op": op, "outcome": "failed"}
            )
            log.warning(
                "Lifecycle step failed; object left in place",
                extra={
                    "extra_fields": {
                        "op": op,
                        "path": str(source),
                        "target": str(target),
                        "error_code": exc.code,
                        "retryable": exc.retryable,
                        "error": exc.message,
                    }
                },
            )
            return False

        self._metrics.increment(
            "siteassets.lifecycle_objects_total", tags={"op": op, "outcome": "succeeded"}
        )
        return True

    def _finish(
        self,
        op: str,
        doc: Any,
        url_map: dict[str, str],
        report: BatchReport,
    ) -> LifecycleResult:
        updated = rewrite_urls(doc, url_map) if doc is not None else None
        log.info(
            "Lifecycle operation finished",
            extra={
                "extra_fields": {
                    "op": op,
                    "succeeded": report.succeeded_count,
                    "failed": report.failed_count,
                }
            },
        )
        return LifecycleResult(updated_doc=updated, report=report, url_map=url_map)

    async def _delete(
        self,
        paths: list[str],
        *,
        op: str,
        initial: AssetState,
        steps: tuple[AssetState, ...],
    ) -> SweepResult:
        """Bulk-delete *paths* in batches and report each one.

        Every path is re-checked against the grammar first.  Paths the
        store did not report as removed were already gone and are neither
        counted nor reported.
        """
        report = BatchReport()
        checked: list[str] = []
        for raw in paths:
            path = sanitize_path(raw)
            if path is None or path.filename is None:
                report.failed.append(_grammar_failure(raw))
            else:
                checked.append(str(path))

        deleted = 0
        for batch in chunked(checked, self._config.remove_batch_size):
            try:
                removed = set(await self._store.remove(batch))
            except SiteAssetsError as exc:
                report.failed.extend(
                    ItemFailure(path=p, reason=exc.message, code=exc.code) for p in batch
                )
                log.warning(
                    "Bulk remove failed",
                    extra={
                        "extra_fields": {
                            "op": op,
                            "batch_size": len(batch),
                            "error_code": exc.code,
                            "error": exc.message,
                        }
                    },
                )
                continue
            for p in batch:
                if p not in removed:
                    continue
                machine = AssetStateMachine(p, initial)
                machine.walk(*steps, AssetState.DELETED)
                report.succeeded.append(ItemOutcome(source=p, state=machine.state))
                deleted += 1

        if deleted:
            self._metrics.increment("siteassets.gc_deleted_total", value=deleted, tags={"op": op})
        log.info(
            "Sweep finished",
            extra={
                "extra_fields": {
                    "op": op,
                    "candidates": len(paths),
                    "deleted": deleted,
                    "failed": report.failed_count,
                }
            },
        )
        return SweepResult(deleted_count=deleted, report=report)


def _owned_by(path: str, site_id: str) -> bool:
    return path.split("/", 1)[0].lower() == site_id.lower()


def _grammar_failure(raw: str) -> ItemFailure:
    return ItemFailure(
        path=raw,
        reason="Path does not match the storage path grammar",
        code=ErrorCode.PATH_TRAVERSAL,
    )
