"""Public data models for the siteassets pipeline.

This module contains every value type, result type, and enum referenced
by the public API surface.  All types are plain dataclasses with no
behaviour beyond small derived properties.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class NamespaceKind(str, Enum):
    """Which kind of tenant owns a storage namespace."""

    PREVIEW = "preview"
    """Ephemeral draft namespace: ``temp-preview/{previewId}``."""

    SITE = "site"
    """Durable published namespace: ``{siteId}``."""


class ImageFormat(str, Enum):
    """Image formats the pipeline accepts and stores."""

    JPEG = "jpeg"
    PNG = "png"
    GIF = "gif"
    WEBP = "webp"

    @property
    def mime(self) -> str:
        return f"image/{self.value}"

    @property
    def extension(self) -> str:
        return "jpg" if self is ImageFormat.JPEG else self.value


class AssetState(str, Enum):
    """Lifecycle states of a stored asset."""

    INGESTED_TEMP = "ingested_temp"
    """Stored under a ``temp-preview`` namespace."""

    INGESTED_SITE = "ingested_site"
    """Stored under a site namespace."""

    CLAIMED = "claimed"
    """Being moved from a preview to a site."""

    DUPLICATED = "duplicated"
    """Being copied to another site; the original stays put."""

    DEREFERENCED = "dereferenced"
    """No longer referenced by the site's config document."""

    ORPHAN_SWEPT = "orphan_swept"
    """Selected for deletion by the orphan collector."""

    EXPIRED = "expired"
    """The owning preview passed its TTL."""

    SITE_DELETED = "site_deleted"
    """The owning site was deleted."""

    DELETED = "deleted"
    """Removed from the object store (terminal)."""

    FAILED = "failed"
    """A lifecycle step failed; the object was left where it was."""


# ---------------------------------------------------------------------------
# Storage values
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StoragePath:
    """A validated ``tenant/id[/filename]`` object path.

    ``tenant`` is the literal ``temp-preview`` or a site id, ``folder_id``
    is a UUID.  Build instances through
    :func:`siteassets.security.paths.sanitize_path` so every one satisfies
    the namespace grammar.
    """

    tenant: str
    folder_id: str
    filename: str | None = None

    @property
    def kind(self) -> NamespaceKind:
        if self.tenant == "temp-preview":
            return NamespaceKind.PREVIEW
        return NamespaceKind.SITE

    @property
    def folder(self) -> str:
        """The ``tenant/id`` prefix without the filename."""
        return f"{self.tenant}/{self.folder_id}"

    def rebase(self, tenant: str) -> StoragePath:
        """Return the same ``id/filename`` under another tenant segment."""
        return StoragePath(tenant=tenant, folder_id=self.folder_id, filename=self.filename)

    def child(self, filename: str) -> StoragePath:
        return StoragePath(tenant=self.tenant, folder_id=self.folder_id, filename=filename)

    def __str__(self) -> str:
        return f"{self.folder}/{self.filename}" if self.filename else self.folder


@dataclass(frozen=True)
class StoreEntry:
    """One object returned by an object-store listing."""

    name: str
    size: int | None = None
    content_type: str | None = None
    updated_at: datetime | None = None

    @property
    def is_folder(self) -> bool:
        return self.name.endswith("/") or (self.size is None and self.content_type is None)


@dataclass(frozen=True)
class ImageAsset:
    """In-flight image produced by the size/quality negotiator."""

    data: bytes
    width: int
    height: int
    format: ImageFormat
    size_bytes: int
    quality: int | None = None
    budget_exceeded: bool = False


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class IngestResult:
    """Outcome of ingesting a single image."""

    url: str
    path: str
    content_type: str | None = None
    size_bytes: int | None = None
    deduplicated: bool = False
    transcoded: bool = False
    budget_exceeded: bool = False


@dataclass(frozen=True)
class ItemFailure:
    """A per-item failure inside a batch operation."""

    path: str
    reason: str
    code: str | None = None


@dataclass(frozen=True)
class ItemOutcome:
    """A per-item success inside a batch operation.

    ``source_retained`` is set when a move copied the object but could not
    remove the original, so the source still exists next to *target*.
    """

    source: str
    target: str | None = None
    state: AssetState | None = None
    source_retained: bool = False


@dataclass
class BatchReport:
    """Aggregated per-item results of a non-atomic batch operation."""

    succeeded: list[ItemOutcome] = field(default_factory=list)
    failed: list[ItemFailure] = field(default_factory=list)

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def ok(self) -> bool:
        """``True`` when no item failed."""
        return not self.failed

    def merge(self, other: BatchReport) -> None:
        self.succeeded.extend(other.succeeded)
        self.failed.extend(other.failed)


@dataclass
class LifecycleResult:
    """Result of a move or copy: the rewritten document plus the report."""

    updated_doc: Any
    report: BatchReport
    url_map: dict[str, str] = field(default_factory=dict)


@dataclass
class SweepResult:
    """Result of a garbage-collection sweep."""

    deleted_count: int
    report: BatchReport = field(default_factory=BatchReport)


@dataclass
class DocumentIngestResult:
    """Result of mirroring every external image referenced by a document."""

    updated_doc: Any
    url_map: dict[str, str]
    report: BatchReport


@dataclass(frozen=True)
class UploadFile:
    """One file of a direct-upload batch, as received from the caller."""

    data: bytes
    filename: str | None = None
    content_type: str | None = None
