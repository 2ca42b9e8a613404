"""siteassets: hardened image ingestion and lifecycle for tenant sites.

Public re-exports
-----------------

* **Client:** :class:`AsyncSiteAssetsClient`
* **Configuration:** :class:`SiteAssetsConfig`
* **Errors:** Every :class:`SiteAssetsError` subclass and :class:`ErrorCode`
* **Models:** All result dataclasses, enums, and supporting types

Usage::

    from siteassets import AsyncSiteAssetsClient, SiteAssetsConfig

    config = SiteAssetsConfig(storage_url="https://<project>.supabase.co",
                              service_key="<service-role key>")
    async with AsyncSiteAssetsClient(config) as assets:
        result = await assets.claim(preview_id, site_id, doc)
        print(result.report.succeeded_count, result.report.failed_count)
"""

from __future__ import annotations

# ── Client ─────────────────────────────────────────────────────────────
from siteassets.client import AsyncSiteAssetsClient

# ── Configuration ───────────────────────────────────────────────────────
from siteassets.config import (
    DEFAULT_IMAGE_MIMES,
    DEFAULT_QUALITY_LADDER,
    SiteAssetsConfig,
)

# ── Errors ──────────────────────────────────────────────────────────────
from siteassets.errors import (
    ContentSpoofingError,
    ErrorCode,
    FetchError,
    FetchTimeoutError,
    ImageDecodeError,
    ImageSizeError,
    ImageTypeError,
    InvalidInputError,
    PathTraversalError,
    SecurityViolationError,
    SiteAssetsError,
    StoreAuthError,
    StoreError,
    StoreNotFoundError,
    TransientIOError,
    UnsafeUrlError,
)

# ── Models ──────────────────────────────────────────────────────────────
from siteassets.models import (
    AssetState,
    BatchReport,
    DocumentIngestResult,
    ImageAsset,
    ImageFormat,
    IngestResult,
    ItemFailure,
    ItemOutcome,
    LifecycleResult,
    NamespaceKind,
    StoragePath,
    StoreEntry,
    SweepResult,
    UploadFile,
)

# ── Public surface ──────────────────────────────────────────────────────

__all__ = [
    # Client
    "AsyncSiteAssetsClient",
    # Configuration
    "SiteAssetsConfig",
    "DEFAULT_IMAGE_MIMES",
    "DEFAULT_QUALITY_LADDER",
    # Error base + code enum
    "SiteAssetsError",
    "ErrorCode",
    # Input and security errors
    "InvalidInputError",
    "SecurityViolationError",
    "PathTraversalError",
    "UnsafeUrlError",
    "ContentSpoofingError",
    # Image errors
    "ImageTypeError",
    "ImageSizeError",
    "ImageDecodeError",
    # I/O errors
    "TransientIOError",
    "FetchTimeoutError",
    "FetchError",
    "StoreError",
    "StoreNotFoundError",
    "StoreAuthError",
    # Models: values
    "StoragePath",
    "StoreEntry",
    "ImageAsset",
    "UploadFile",
    # Models: results
    "IngestResult",
    "DocumentIngestResult",
    "LifecycleResult",
    "SweepResult",
    "BatchReport",
    "ItemOutcome",
    "ItemFailure",
    # Models: enums
    "NamespaceKind",
    "ImageFormat",
    "AssetState",
]
