"""Asynchronous facade over the whole image pipeline.

:class:`AsyncSiteAssetsClient` builds the object store client, the
remote-fetch HTTP client, the transcoder pool, the ingestion pipeline and
the lifecycle manager once, and exposes their operations.

Usage::

    import asyncio
    from siteassets import AsyncSiteAssetsClient, SiteAssetsConfig

    async def main():
        config = SiteAssetsConfig(
            storage_url="https://<project>.supabase.co",
            service_key="<service-role key>",
        )
        async with AsyncSiteAssetsClient(config) as assets:
            result = await assets.ingest_url(
                "https://example.com/house.jpg",
                assets.preview_folder("<preview uuid>"),
            )
            print(result.url)

    asyncio.run(main())
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

import httpx

from siteassets.config import SiteAssetsConfig
from siteassets.image import Transcoder
from siteassets.ingest import IngestionPipeline
from siteassets.lifecycle import LifecycleManager
from siteassets.models import (
    BatchReport,
    DocumentIngestResult,
    IngestResult,
    LifecycleResult,
    StoragePath,
    SweepResult,
    UploadFile,
)
from siteassets.security import preview_folder, site_folder
from siteassets.store import ObjectStore, SupabaseStorage


class AsyncSiteAssetsClient:
    """Asynchronous client for ingesting and managing site images.

    Parameters
    ----------
    config:
        Pipeline configuration.  **Required.**
    store:
        An existing :class:`~siteassets.store.ObjectStore`.  When omitted a
        :class:`~siteassets.store.SupabaseStorage` is built from *config*
        and closed with the client.
    http_client:
        An existing client for remote fetches.  When omitted one is created
        and closed with the client.
    """

    def __init__(
        self,
        config: SiteAssetsConfig,
        store: ObjectStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._owned_store = SupabaseStorage(config) if store is None else None
        self._store: ObjectStore = store if store is not None else self._owned_store
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.fetch_timeout_seconds),
            proxy=config.http_proxy,
        )
        self._transcoder = Transcoder(config)
        self._pipeline = IngestionPipeline(self._store, config, self._http, self._transcoder)
        self._lifecycle = LifecycleManager(self._store, config)

    @property
    def config(self) -> SiteAssetsConfig:
        return self._config

    @property
    def store(self) -> ObjectStore:
        return self._store

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    @staticmethod
    def preview_folder(preview_id: str) -> StoragePath:
        return preview_folder(preview_id)

    @staticmethod
    def site_folder(site_id: str, folder_id: str | None = None) -> StoragePath:
        return site_folder(site_id, folder_id)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest_url(self, source_url: str, target_folder: StoragePath | str) -> IngestResult:
        """Mirror one remote image.  See :meth:`IngestionPipeline.ingest_url`."""
        return await self._pipeline.ingest_url(source_url, target_folder)

    async def ingest_upload(
        self,
        data: bytes,
        target_folder: StoragePath | str,
        *,
        filename: str | None = None,
        declared_type: str | None = None,
    ) -> IngestResult:
        """Store one uploaded image.  See :meth:`IngestionPipeline.ingest_upload`."""
        return await self._pipeline.ingest_upload(
            data, target_folder, filename=filename, declared_type=declared_type,
        )

    async def ingest_many(
        self,
        urls: Sequence[str],
        target_folder: StoragePath | str,
    ) -> tuple[dict[str, str], BatchReport]:
        return await self._pipeline.ingest_many(urls, target_folder)

    async def ingest_document(self, doc: Any, target_folder: StoragePath | str) -> DocumentIngestResult:
        """Mirror every external image in *doc* and return it rewritten."""
        return await self._pipeline.ingest_document(doc, target_folder)

    async def upload_many(
        self,
        files: Sequence[UploadFile],
        target_folder: StoragePath | str,
    ) -> tuple[list[IngestResult], BatchReport]:
        return await self._pipeline.upload_many(files, target_folder)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def claim(self, preview_id: str, site_id: str, doc: Any) -> LifecycleResult:
        """Move a preview's assets into a site.  See :meth:`LifecycleManager.claim`."""
        return await self._lifecycle.claim(preview_id, site_id, doc)

    async def duplicate(self, source_site_id: str, target_site_id: str, doc: Any) -> LifecycleResult:
        """Copy a site's assets into another site."""
        return await self._lifecycle.duplicate(source_site_id, target_site_id, doc)

    async def sweep_orphans(self, site_id: str, old_doc: Any, new_doc: Any) -> SweepResult:
        return await self._lifecycle.sweep_orphans(site_id, old_doc, new_doc)

    async def sweep_expired(self, expired_preview_ids: Iterable[str]) -> SweepResult:
        return await self._lifecycle.sweep_expired(expired_preview_ids)

    async def sweep_site(self, site_id: str, doc: Any = None) -> SweepResult:
        return await self._lifecycle.sweep_site(site_id, doc)

    async def delete_image(self, site_id: str, path_or_url: str) -> bool:
        return await self._lifecycle.delete_image(site_id, path_or_url)

    # ------------------------------------------------------------------
    # Resource management
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the HTTP clients and the transcoder pool this client owns."""
        if self._owned_store is not None:
            await self._owned_store.close()
        if self._owns_http:
            await self._http.aclose()
        self._transcoder.close()

    async def __aenter__(self) -> AsyncSiteAssetsClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
