"""Shared test fixtures for the siteassets test suite."""

from __future__ import annotations

import io
import os
from typing import Any

import pytest
from PIL import Image

from siteassets.config import SiteAssetsConfig
from siteassets.errors import StoreNotFoundError, TransientIOError
from siteassets.models import StoreEntry

PREVIEW_ID = "11111111-1111-4111-8111-111111111111"
SITE_ID = "22222222-2222-4222-8222-222222222222"
OTHER_SITE_ID = "33333333-3333-4333-8333-333333333333"
FOLDER_ID = "44444444-4444-4444-8444-444444444444"

STORAGE_URL = "https://proj.supabase.co"
PUBLIC_PREFIX = f"{STORAGE_URL}/storage/v1/object/public/site-images/"


# ---------------------------------------------------------------------------
# Doubles
# ---------------------------------------------------------------------------

class FakeObjectStore:
    """In-memory object store with per-path failure injection."""

    def __init__(self, public_prefix: str = PUBLIC_PREFIX) -> None:
        self.public_prefix = public_prefix
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.fail_download: set[str] = set()
        self.fail_upload: set[str] = set()
        self.fail_remove = False
        self.fail_list: set[str] = set()
        self.uploads: list[dict[str, Any]] = []
        self.removes: list[list[str]] = []

    def put(self, path: str, data: bytes = b"\xff\xd8\xff\xe0data", content_type: str = "image/jpeg") -> None:
        self.objects[path] = (data, content_type)

    async def upload(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str,
        cache_control: str = "3600",
        upsert: bool = True,
    ) -> None:
        if path in self.fail_upload:
            raise TransientIOError(message=f"upload failed: {path}", context={"path": path})
        self.uploads.append({
            "path": path,
            "size": len(data),
            "content_type": content_type,
            "cache_control": cache_control,
            "upsert": upsert,
        })
        self.objects[path] = (data, content_type)

    async def download(self, path: str) -> bytes:
        if path in self.fail_download:
            raise TransientIOError(message=f"download failed: {path}", context={"path": path})
        if path not in self.objects:
            raise StoreNotFoundError(message=f"missing: {path}", context={"path": path})
        return self.objects[path][0]

    async def list(
        self,
        prefix: str,
        *,
        limit: int = 1000,
        offset: int = 0,
        sort_by: str = "name",
    ) -> list[StoreEntry]:
        prefix = prefix.strip("/")
        if prefix in self.fail_list:
            raise TransientIOError(message=f"list failed: {prefix}", context={"path": prefix})
        entries: dict[str, StoreEntry] = {}
        for path, (data, content_type) in self.objects.items():
            if not path.startswith(prefix + "/"):
                continue
            rest = path[len(prefix) + 1:]
            if "/" in rest:
                name = rest.split("/", 1)[0] + "/"
                entries[name] = StoreEntry(name=name)
            else:
                entries[rest] = StoreEntry(name=rest, size=len(data), content_type=content_type)
        ordered = [entries[k] for k in sorted(entries)]
        return ordered[offset:offset + limit]

    async def remove(self, paths: list[str]) -> list[str]:
        self.removes.append(list(paths))
        if self.fail_remove:
            raise TransientIOError(message="remove failed", context={"path": paths[0]})
        removed = [p for p in paths if p in self.objects]
        for p in removed:
            del self.objects[p]
        return removed

    def public_url(self, path: str) -> str:
        return f"{self.public_prefix}{path}"

    def paths_under(self, prefix: str) -> list[str]:
        return sorted(p for p in self.objects if p.startswith(prefix))


class RecordingMetricsHook:
    """A metrics backend that records all calls for assertion."""

    def __init__(self) -> None:
        self.increments: list[dict[str, Any]] = []
        self.timings: list[dict[str, Any]] = []
        self.gauges: list[dict[str, Any]] = []

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        self.increments.append({"name": name, "value": value, "tags": tags})

    def timing(self, name: str, ms: float, tags: dict[str, str] | None = None) -> None:
        self.timings.append({"name": name, "ms": ms, "tags": tags})

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.gauges.append({"name": name, "value": value, "tags": tags})

    def names(self) -> list[str]:
        return [c["name"] for c in self.increments]


def image_bytes(
    fmt: str = "PNG",
    size: tuple[int, int] = (64, 48),
    color: Any = (200, 30, 30),
    mode: str = "RGB",
    **save_kwargs: Any,
) -> bytes:
    """Encode a solid-colour image with Pillow."""
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


def noise_bytes(fmt: str = "PNG", size: tuple[int, int] = (256, 256)) -> bytes:
    """Encode an incompressible random-noise image."""
    img = Image.frombytes("RGB", size, os.urandom(size[0] * size[1] * 3))
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config() -> SiteAssetsConfig:
    """Default test configuration with a dummy service key."""
    return SiteAssetsConfig(storage_url=STORAGE_URL, service_key="service-key-abcd1234")


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def metrics() -> RecordingMetricsHook:
    return RecordingMetricsHook()


@pytest.fixture
def make_image():
    """Factory fixture: ``make_image(fmt, size, color, mode, **save_kwargs)``."""
    return image_bytes


@pytest.fixture
def make_noise():
    """Factory fixture: ``make_noise(fmt, size)``."""
    return noise_bytes
