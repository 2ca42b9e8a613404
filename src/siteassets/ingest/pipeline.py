"""Ingestion: remote URLs and direct uploads into a tenant folder.

URL-sourced images go through::

    guard -> dedup -> fetch -> authenticate -> (negotiate) -> name
          -> path check -> upload

Direct uploads skip the guard and the fetch, enforce an input ceiling
before anything else, and are always negotiated so the stored artifact is
metadata-free.

Batch variants run single-item ingestion with bounded concurrency and
return a :class:`~siteassets.models.BatchReport` instead of raising for
individual items.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from typing import Any

import httpx

from siteassets.config import SiteAssetsConfig
from siteassets.document import (
    extract_external_image_urls,
    rewrite_urls,
    storage_path_from_url,
)
from siteassets.errors import (
    ImageSizeError,
    ImageTypeError,
    InvalidInputError,
    SecurityViolationError,
    SiteAssetsError,
)
from siteassets.image import Transcoder
from siteassets.models import (
    AssetState,
    BatchReport,
    DocumentIngestResult,
    ImageFormat,
    IngestResult,
    ItemFailure,
    ItemOutcome,
    NamespaceKind,
    StoragePath,
    UploadFile,
)
from siteassets.observability import get_logger, resolve_metrics
from siteassets.security import (
    authenticate,
    check_url,
    generate_secure_filename,
    is_valid_image_mime,
    require_path,
    sanitize_filename,
    sanitize_path,
)
from siteassets.store import ObjectStore

from .fetch import fetch_image

log = get_logger("siteassets.ingest")


def _ingested_state(folder: StoragePath) -> AssetState:
    if folder.kind is NamespaceKind.PREVIEW:
        return AssetState.INGESTED_TEMP
    return AssetState.INGESTED_SITE


class IngestionPipeline:
    """Mirror remote images and accept direct uploads into storage.

    Parameters
    ----------
    store:
        The object store every image is written to.
    config:
        Pipeline configuration.
    http_client:
        Client used for remote fetches.  It should **not** carry the store
        credentials.
    transcoder:
        Worker pool for the size/quality negotiator.
    """

    def __init__(
        self,
        store: ObjectStore,
        config: SiteAssetsConfig,
        http_client: httpx.AsyncClient,
        transcoder: Transcoder,
    ) -> None:
        self._store = store
        self._config = config
        self._http = http_client
        self._transcoder = transcoder
        self._metrics = resolve_metrics(config.metrics)

    # ------------------------------------------------------------------
    # Single items
    # ------------------------------------------------------------------

    async def ingest_url(self, source_url: str, target_folder: StoragePath | str) -> IngestResult:
        """Mirror the image at *source_url* into *target_folder*.

        Parameters
        ----------
        source_url:
            Remote ``http(s)`` image URL.
        target_folder:
            ``temp-preview/{id}`` or ``{siteId}/{id}``, without a filename.

        Returns
        -------
        IngestResult
            Public URL and path of the stored object.  When *source_url*
            already points at a valid object in our bucket it is returned
            unchanged with ``deduplicated=True`` and nothing is fetched.

        Raises
        ------
        UnsafeUrlError
            If *source_url* fails the fetch guard.
        PathTraversalError
            If the target folder or the composed path fails the grammar.
        ContentSpoofingError
            If the body matches no image signature.
        FetchTimeoutError, TransientIOError
            On retryable network or store failures.
        FetchError, ImageTypeError, ImageSizeError, ImageDecodeError, StoreError
            On the corresponding non-retryable failures.
        """
        start = time.monotonic()
        try:
            result = await self._ingest_url(source_url, target_folder)
        except SiteAssetsError as exc:
            self._record_failure("url", exc, source=source_url)
            raise
        self._record_success("url", result, start)
        return result

    async def _ingest_url(self, source_url: str, target_folder: StoragePath | str) -> IngestResult:
        check_url(source_url, op="ingest_url")
        folder = self._resolve_folder(target_folder, op="ingest_url")

        relative = storage_path_from_url(source_url, self._config.public_url_prefix)
        if relative is not None:
            existing = sanitize_path(relative)
            if existing is not None and existing.filename is not None:
                log.debug(
                    "Source already stored; skipping fetch",
                    extra={"extra_fields": {"op": "ingest_url", "path": str(existing)}},
                )
                return IngestResult(url=source_url, path=str(existing), deduplicated=True)

        data, declared = await fetch_image(self._http, source_url, self._config)
        detected = authenticate(data, declared, source=source_url)

        transcoded = False
        budget_exceeded = False
        fmt: ImageFormat = detected
        if len(data) > self._config.budget_bytes:
            asset = await self._transcoder.negotiate(data)
            data, fmt = asset.data, asset.format
            transcoded = True
            budget_exceeded = asset.budget_exceeded

        path = await self._store_bytes(folder, data, fmt, op="ingest_url")
        return IngestResult(
            url=self._store.public_url(path),
            path=path,
            content_type=fmt.mime,
            size_bytes=len(data),
            transcoded=transcoded,
            budget_exceeded=budget_exceeded,
        )

    async def ingest_upload(
        self,
        data: bytes,
        target_folder: StoragePath | str,
        *,
        filename: str | None = None,
        declared_type: str | None = None,
    ) -> IngestResult:
        """Store a directly uploaded image in *target_folder*.

        The caller is responsible for having authorized the tenant that
        owns *target_folder*.  The uploader's *filename* is only used for
        diagnostics; the stored name is always generated.

        Raises
        ------
        ImageSizeError
            If *data* exceeds ``upload_max_bytes``; checked first.
        ImageTypeError
            If *declared_type* is given and is not an accepted image type.
        ContentSpoofingError
            If *data* matches no image signature.
        ImageDecodeError
            If *data* cannot be decoded.
        """
        start = time.monotonic()
        source = sanitize_filename(filename) if filename else "<upload>"
        try:
            result = await self._ingest_upload(data, target_folder, source, declared_type)
        except SiteAssetsError as exc:
            self._record_failure("upload", exc, source=source)
            raise
        self._record_success("upload", result, start)
        return result

    async def _ingest_upload(
        self,
        data: bytes,
        target_folder: StoragePath | str,
        source: str,
        declared_type: str | None,
    ) -> IngestResult:
        max_bytes = self._config.upload_max_bytes
        if len(data) > max_bytes:
            raise ImageSizeError(
                message=f"Upload is {len(data)} bytes, above the {max_bytes} byte limit",
                context={"size_bytes": len(data), "max_bytes": max_bytes, "source": source},
            )
        if declared_type is not None and not is_valid_image_mime(
            declared_type, self._config.allowed_mimes
        ):
            raise ImageTypeError(
                message=f"Upload content type {declared_type!r} is not an accepted image type",
                context={"content_type": declared_type, "source": source},
            )

        folder = self._resolve_folder(target_folder, op="ingest_upload")
        authenticate(data, declared_type, source=source)
        asset = await self._transcoder.negotiate(data)

        path = await self._store_bytes(folder, asset.data, asset.format, op="ingest_upload")
        return IngestResult(
            url=self._store.public_url(path),
            path=path,
            content_type=asset.format.mime,
            size_bytes=asset.size_bytes,
            transcoded=True,
            budget_exceeded=asset.budget_exceeded,
        )

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def ingest_many(
        self,
        urls: Sequence[str],
        target_folder: StoragePath | str,
    ) -> tuple[dict[str, str], BatchReport]:
        """Mirror every URL in *urls* with at most ``max_concurrent`` in
        flight.

        Returns
        -------
        tuple[dict[str, str], BatchReport]
            ``{source_url: stored_public_url}`` for every success, and the
            per-URL report.  Duplicated URLs are ingested once.
        """
        folder = self._resolve_folder(target_folder, op="ingest_many")
        unique = list(dict.fromkeys(urls))
        semaphore = asyncio.Semaphore(self._config.max_concurrent)

        async def _ingest_one(url: str) -> IngestResult | ItemFailure:
            async with semaphore:
                try:
                    return await self.ingest_url(url, folder)
                except SiteAssetsError as exc:
                    return ItemFailure(path=url, reason=exc.message, code=exc.code)

        results = await asyncio.gather(*(_ingest_one(url) for url in unique))

        url_map: dict[str, str] = {}
        report = BatchReport()
        state = _ingested_state(folder)
        for url, outcome in zip(unique, results):
            if isinstance(outcome, ItemFailure):
                report.failed.append(outcome)
                continue
            url_map[url] = outcome.url
            report.succeeded.append(ItemOutcome(source=url, target=outcome.path, state=state))

        log.info(
            "Batch ingestion finished",
            extra={
                "extra_fields": {
                    "op": "ingest_many",
                    "folder": folder.folder,
                    "succeeded": report.succeeded_count,
                    "failed": report.failed_count,
                }
            },
        )
        return url_map, report

    async def ingest_document(
        self,
        doc: Any,
        target_folder: StoragePath | str,
    ) -> DocumentIngestResult:
        """Mirror every external image referenced by *doc*.

        The returned document points at the stored copies for every URL
        that was mirrored; URLs that failed are left as they were and
        listed in the report.
        """
        urls = extract_external_image_urls(doc, self._config.public_url_prefix)
        if not urls:
            return DocumentIngestResult(updated_doc=rewrite_urls(doc, {}), url_map={}, report=BatchReport())
        url_map, report = await self.ingest_many(urls, target_folder)
        return DocumentIngestResult(
            updated_doc=rewrite_urls(doc, url_map),
            url_map=url_map,
            report=report,
        )

    async def upload_many(
        self,
        files: Sequence[UploadFile],
        target_folder: StoragePath | str,
    ) -> tuple[list[IngestResult], BatchReport]:
        """Store a batch of direct uploads.

        Raises
        ------
        InvalidInputError
            If the batch holds more than ``upload_max_files`` files.  No
            file is processed in that case.
        """
        max_files = self._config.upload_max_files
        if len(files) > max_files:
            raise InvalidInputError(
                message=f"Upload batch has {len(files)} files; at most {max_files} are allowed",
                context={"field": "files", "value": str(len(files))},
            )
        folder = self._resolve_folder(target_folder, op="upload_many")
        semaphore = asyncio.Semaphore(self._config.max_concurrent)

        async def _upload_one(item: UploadFile) -> IngestResult | ItemFailure:
            async with semaphore:
                try:
                    return await self.ingest_upload(
                        item.data,
                        folder,
                        filename=item.filename,
                        declared_type=item.content_type,
                    )
                except SiteAssetsError as exc:
                    name = sanitize_filename(item.filename) if item.filename else "<upload>"
                    return ItemFailure(path=name, reason=exc.message, code=exc.code)

        outcomes = await asyncio.gather(*(_upload_one(f) for f in files))

        stored: list[IngestResult] = []
        report = BatchReport()
        state = _ingested_state(folder)
        for item, outcome in zip(files, outcomes):
            if isinstance(outcome, ItemFailure):
                report.failed.append(outcome)
                continue
            stored.append(outcome)
            report.succeeded.append(
                ItemOutcome(source=item.filename or "<upload>", target=outcome.path, state=state)
            )
        return stored, report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_folder(self, target_folder: StoragePath | str, *, op: str) -> StoragePath:
        folder = require_path(str(target_folder), op=op)
        if folder.filename is not None:
            raise InvalidInputError(
                message=f"Target folder must not include a filename: {str(target_folder)!r}",
                context={"field": "target_folder", "value": str(target_folder)[:200]},
            )
        return folder

    async def _store_bytes(self, folder: StoragePath, data: bytes, fmt: ImageFormat, *, op: str) -> str:
        filename = generate_secure_filename(fmt.extension)
        path = str(require_path(str(folder.child(filename)), op=op))
        await self._store.upload(
            path,
            data,
            content_type=fmt.mime,
            cache_control=self._config.cache_control,
            upsert=True,
        )
        return path

    def _record_success(self, source: str, result: IngestResult, start: float) -> None:
        elapsed_ms = (time.monotonic() - start) * 1000
        outcome = "deduplicated" if result.deduplicated else "stored"
        self._metrics.increment(
            "siteassets.ingest_total", tags={"source": source, "outcome": outcome}
        )
        self._metrics.timing(
            "siteassets.ingest_duration_ms", elapsed_ms, tags={"source": source}
        )
        log.info(
            "Image ingested",
            extra={
                "extra_fields": {
                    "op": f"ingest_{source}",
                    "path": result.path,
                    "outcome": outcome,
                    "size_bytes": result.size_bytes,
                    "transcoded": result.transcoded,
                    "budget_exceeded": result.budget_exceeded,
                    "duration_ms": round(elapsed_ms, 1),
                }
            },
        )

    def _record_failure(self, kind: str, exc: SiteAssetsError, *, source: str) -> None:
        self._metrics.increment(
            "siteassets.ingest_total", tags={"source": kind, "outcome": exc.code}
        )
        if isinstance(exc, SecurityViolationError):
            # Already logged as a security event where it was raised.
            self._metrics.increment(
                "siteassets.security_rejections_total", tags={"reason": exc.code}
            )
            return
        log.warning(
            "Image ingestion failed",
            extra={
                "extra_fields": {
                    "op": f"ingest_{kind}",
                    "source": source[:200],
                    "error_code": exc.code,
                    "retryable": exc.retryable,
                    "error": exc.message,
                }
            },
        )
