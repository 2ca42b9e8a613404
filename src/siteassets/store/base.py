"""Object store contract.

The pipeline talks to storage only through :class:`ObjectStore`.  One
instance is built at process start and passed to every component that
needs it; no component looks a store up on its own.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from siteassets.models import StoreEntry


@runtime_checkable
class ObjectStore(Protocol):
    """Minimal object store surface used by ingestion and lifecycle code.

    Paths are bucket-relative (``tenant/id/filename``).  Implementations
    raise :class:`~siteassets.errors.StoreError` subclasses or
    :class:`~siteassets.errors.TransientIOError` on failure.
    """

    async def upload(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str,
        cache_control: str = "3600",
        upsert: bool = True,
    ) -> None:
        """Write *data* at *path*.  With ``upsert`` the last write wins."""
        ...

    async def download(self, path: str) -> bytes:
        """Return the bytes stored at *path*."""
        ...

    async def list(
        self,
        prefix: str,
        *,
        limit: int = 1000,
        offset: int = 0,
        sort_by: str = "name",
    ) -> list[StoreEntry]:
        """List the direct children of *prefix*.

        Entry names are relative to *prefix*; sub-folders are returned as
        entries whose :attr:`StoreEntry.is_folder` is ``True``.
        """
        ...

    async def remove(self, paths: list[str]) -> list[str]:
        """Delete every path in *paths* and return the ones that existed.

        Missing paths are not an error; they are simply absent from the
        result.
        """
        ...

    def public_url(self, path: str) -> str:
        """Return the public URL an object at *path* is served from."""
        ...
