"""Pipeline configuration for siteassets.

:class:`SiteAssetsConfig` is a plain dataclass that captures every
tuneable knob of the pipeline.  One instance is built at process start and
handed to :class:`~siteassets.client.AsyncSiteAssetsClient` (or to the
individual components when they are wired by hand).

Two module-level constants hold the defaults:

* :data:`DEFAULT_IMAGE_MIMES`: ``Content-Type`` values accepted from
  remote hosts and uploaders.
* :data:`DEFAULT_QUALITY_LADDER`: encode qualities tried, in order, until
  the output fits the byte budget.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Literal

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_IMAGE_MIMES: list[str] = [
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
]
"""MIME types accepted as a declared ``Content-Type``.  ``image/jpg`` is a
common non-standard alias and is tolerated on input only."""

DEFAULT_QUALITY_LADDER: tuple[int, ...] = (85, 70, 60, 50, 40, 30, 20)
"""Descending encode qualities tried by the size/quality negotiator."""

MIB = 1024 * 1024


# ---------------------------------------------------------------------------
# Configuration dataclass
# ---------------------------------------------------------------------------

@dataclass
class SiteAssetsConfig:
    """Complete configuration for the image pipeline.

    Every parameter has a default; a working deployment sets at least
    ``storage_url`` and ``service_key``.

    Parameters
    ----------
    storage_url:
        Root URL of the object-store deployment, e.g.
        ``https://<project>.supabase.co``.  Plain HTTP is accepted only for
        local hosts.
    service_key:
        Service-role credential for the store.  **Never logged.**
    bucket:
        Bucket holding every tenant namespace.
    max_dimension:
        Longest side (pixels) the negotiator will emit.  Smaller images
        are never upscaled.
    budget_bytes:
        Target output size for the negotiator.  URL-sourced images larger
        than this are transcoded; smaller ones are stored as fetched.
    quality_ladder:
        Strictly descending encode qualities (1-100) tried in order.
    output_format:
        Format the negotiator encodes to.
    upload_max_bytes:
        Hard ceiling on a direct-upload input, checked before decoding.
    upload_max_files:
        Maximum number of files accepted by one direct-upload batch.
    fetch_timeout_seconds:
        Bound on a single remote fetch (connect + read of the whole body).
    fetch_max_bytes:
        Hard cap on the size of a fetched body.
    fetch_user_agent:
        ``User-Agent`` sent when mirroring remote images.
    max_concurrent:
        Maximum in-flight fetch+transcode+upload pipelines in a batch.
    transcode_workers:
        Size of the worker pool the CPU-bound negotiator runs on.
    max_image_pixels:
        Decoder ceiling (width * height) guarding against decompression
        bombs.
    cache_control:
        ``Cache-Control`` max-age (seconds, as a string) stored on objects.
    list_limit:
        Page size used when listing a namespace.
    remove_batch_size:
        Maximum number of paths sent in one bulk remove call.
    timeout_seconds:
        HTTP timeout for object-store calls.
    http_proxy:
        Optional HTTP/HTTPS proxy URL for store and fetch traffic.
    metrics:
        Optional :class:`~siteassets.observability.MetricsHook`.
    debug_dump_payload:
        Write redacted store request/response dumps to *stderr*.
    """

    # ── Store ───────────────────────────────────────────────────────────
    storage_url: str = ""

    service_key: str = ""

    bucket: str = "site-images"

    # ── Negotiator ──────────────────────────────────────────────────────
    max_dimension: int = 1920

    budget_bytes: int = 5 * MIB

    quality_ladder: tuple[int, ...] = field(
        default_factory=lambda: DEFAULT_QUALITY_LADDER,
    )

    output_format: Literal["webp", "jpeg", "png"] = "webp"

    max_image_pixels: int = 120_000_000

    transcode_workers: int = 2

    # ── Ingestion ───────────────────────────────────────────────────────
    allowed_mimes: list[str] = field(
        default_factory=lambda: list(DEFAULT_IMAGE_MIMES),
    )

    upload_max_bytes: int = 10 * MIB

    upload_max_files: int = 10

    fetch_timeout_seconds: float = 30.0

    fetch_max_bytes: int = 30 * MIB

    fetch_user_agent: str = "siteassets/0.1 (+image-mirror)"

    max_concurrent: int = 5

    # ── Store HTTP ──────────────────────────────────────────────────────
    cache_control: str = "3600"

    list_limit: int = 1000

    remove_batch_size: int = 1000

    timeout_seconds: float = 30.0

    http_proxy: str | None = None

    # ── Observability ──────────────────────────────────────────────────
    metrics: Any | None = None

    # ── Debug ───────────────────────────────────────────────────────────
    debug_dump_payload: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        from urllib.parse import urlparse

        if self.storage_url:
            parsed = urlparse(self.storage_url)
            if parsed.scheme not in ("http", "https"):
                raise ValueError(
                    f"storage_url must be http(s), got {self.storage_url!r}"
                )
            if parsed.scheme == "http" and parsed.hostname not in (
                "localhost",
                "127.0.0.1",
                "::1",
            ):
                raise ValueError(
                    f"storage_url uses insecure HTTP for non-local host '{parsed.hostname}'. "
                    "Use HTTPS to protect the service key, or target localhost for testing."
                )
            self.storage_url = self.storage_url.rstrip("/")

        self.quality_ladder = tuple(self.quality_ladder)
        if not self.quality_ladder:
            raise ValueError("quality_ladder must not be empty")
        if any(not 1 <= q <= 100 for q in self.quality_ladder):
            raise ValueError(f"quality_ladder values must be in 1..100, got {self.quality_ladder}")
        if any(a <= b for a, b in zip(self.quality_ladder, self.quality_ladder[1:])):
            raise ValueError(
                f"quality_ladder must be strictly descending, got {self.quality_ladder}"
            )

        if self.output_format not in ("webp", "jpeg", "png"):
            raise ValueError(f"output_format must be webp, jpeg or png, got {self.output_format!r}")
        if self.max_dimension < 1:
            raise ValueError(f"max_dimension must be >= 1, got {self.max_dimension}")
        if self.budget_bytes <= 0:
            raise ValueError(f"budget_bytes must be > 0, got {self.budget_bytes}")
        if self.upload_max_bytes <= 0:
            raise ValueError(f"upload_max_bytes must be > 0, got {self.upload_max_bytes}")
        if self.upload_max_files < 1:
            raise ValueError(f"upload_max_files must be >= 1, got {self.upload_max_files}")
        if self.fetch_timeout_seconds <= 0:
            raise ValueError(f"fetch_timeout_seconds must be > 0, got {self.fetch_timeout_seconds}")
        if self.fetch_max_bytes <= 0:
            raise ValueError(f"fetch_max_bytes must be > 0, got {self.fetch_max_bytes}")
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {self.max_concurrent}")
        if self.transcode_workers < 1:
            raise ValueError(f"transcode_workers must be >= 1, got {self.transcode_workers}")
        if self.list_limit < 1:
            raise ValueError(f"list_limit must be >= 1, got {self.list_limit}")
        if self.remove_batch_size < 1:
            raise ValueError(f"remove_batch_size must be >= 1, got {self.remove_batch_size}")
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {self.timeout_seconds}")

    @property
    def public_url_prefix(self) -> str:
        """URL prefix under which every object of the bucket is served."""
        return f"{self.storage_url}/storage/v1/object/public/{self.bucket}/"

    def __repr__(self) -> str:
        """Mask the service key to prevent accidental credential leakage."""
        parts: list[str] = []
        for f in dataclasses.fields(self):
            val = getattr(self, f.name)
            if f.name == "service_key":
                masked = f"...{val[-4:]}" if len(val) >= 4 else "****"
                parts.append(f"service_key='{masked}'")
            else:
                parts.append(f"{f.name}={val!r}")
        return f"SiteAssetsConfig({', '.join(parts)})"
