"""Async HTTP client for a Supabase Storage bucket.

Implements :class:`~siteassets.store.base.ObjectStore` over the storage
REST API:

========  ==============================================  ============
op        request                                          body
========  ==============================================  ============
upload    ``POST /storage/v1/object/{bucket}/{path}``      raw bytes
download  ``GET /storage/v1/object/{bucket}/{path}``       --
list      ``POST /storage/v1/object/list/{bucket}``        JSON
remove    ``DELETE /storage/v1/object/{bucket}``           JSON
========  ==============================================  ============

Every call is made once.  Failures are mapped by
:mod:`siteassets.store.errors_map`; nothing is retried here.
"""

from __future__ import annotations

import json as _json
import sys
import time
from datetime import datetime
from typing import Any

import httpx

from siteassets.config import SiteAssetsConfig
from siteassets.models import StoreEntry
from siteassets.observability import get_logger, resolve_metrics
from siteassets.utils import chunked, redact

from .errors_map import TRANSIENT_EXCEPTIONS, network_error, raise_for_status

log = get_logger("siteassets.store")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_timestamp(raw: Any) -> datetime | None:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_entry(item: dict[str, Any]) -> StoreEntry:
    """Build a :class:`StoreEntry` from one item of a list response.

    Folders come back with ``id`` and ``metadata`` set to ``null``.
    """
    name = str(item.get("name", ""))
    metadata = item.get("metadata") or {}
    if item.get("id") is None and not metadata and not name.endswith("/"):
        name = f"{name}/"
    size = metadata.get("size")
    return StoreEntry(
        name=name,
        size=int(size) if isinstance(size, (int, float)) else None,
        content_type=metadata.get("mimetype"),
        updated_at=_parse_timestamp(item.get("updated_at")),
    )


def _dump_payload(
    method: str,
    url: str,
    payload: Any | None,
    response_status: int | None,
    response_body: Any | None,
    secret: str | None = None,
) -> None:
    """Write a redacted debug dump of the request/response to stderr."""
    dump: dict[str, Any] = {
        "method": method,
        "url": url,
    }
    if payload is not None:
        dump["request_body"] = payload
    if response_status is not None:
        dump["response_status"] = response_status
    if response_body is not None:
        dump["response_body"] = response_body
    print(
        _json.dumps(redact(dump, secret), indent=2, default=str),
        file=sys.stderr,
    )


# ---------------------------------------------------------------------------
# Store client
# ---------------------------------------------------------------------------

class SupabaseStorage:
    """Object store backed by a Supabase Storage bucket.

    Parameters
    ----------
    config:
        Supplies ``storage_url``, ``service_key``, ``bucket`` and the HTTP
        timeout and proxy.
    http_client:
        An existing :class:`httpx.AsyncClient`.  When omitted one is
        created and closed by :meth:`close`.
    """

    def __init__(
        self,
        config: SiteAssetsConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not config.storage_url:
            raise ValueError("SupabaseStorage requires config.storage_url")
        self._config = config
        self._metrics = resolve_metrics(config.metrics)
        self._base = f"{config.storage_url}/storage/v1"
        self._headers = {
            "Authorization": f"Bearer {config.service_key}",
            "apikey": config.service_key,
        }
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout_seconds),
            proxy=config.http_proxy,
        )

    # -- request lifecycle -------------------------------------------------

    async def _send(
        self,
        op: str,
        method: str,
        url: str,
        path: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request, record metrics, and raise on failure."""
        headers = {**self._headers, **kwargs.pop("headers", {})}
        t0 = time.monotonic()
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            self._metrics.increment(
                "siteassets.store_requests_total",
                tags={"op": op, "status": "error"},
            )
            log.warning(
                "Store request network error",
                extra={
                    "extra_fields": {
                        "op": op,
                        "path": path,
                        "transient": isinstance(exc, TRANSIENT_EXCEPTIONS),
                        "error": str(exc),
                    }
                },
            )
            raise network_error(exc, op, path) from exc

        elapsed_ms = (time.monotonic() - t0) * 1000
        status = str(response.status_code)
        self._metrics.increment(
            "siteassets.store_requests_total",
            tags={"op": op, "status": status},
        )
        self._metrics.timing(
            "siteassets.store_duration_ms",
            elapsed_ms,
            tags={"op": op, "status": status},
        )

        if self._config.debug_dump_payload:
            payload = kwargs.get("json", kwargs.get("content"))
            try:
                body: Any = response.json()
            except ValueError:
                body = response.content if op == "download" else response.text[:1000]
            _dump_payload(
                method, url, payload, response.status_code, body,
                secret=self._config.service_key,
            )

        if not 200 <= response.status_code < 300:
            log.warning(
                "Store request failed",
                extra={
                    "extra_fields": {
                        "op": op,
                        "path": path,
                        "status_code": response.status_code,
                        "duration_ms": round(elapsed_ms, 1),
                    }
                },
            )
            raise_for_status(response, op, path)
        return response

    def _object_url(self, path: str) -> str:
        return f"{self._base}/object/{self._config.bucket}/{path.lstrip('/')}"

    # -- public API --------------------------------------------------------

    async def upload(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str,
        cache_control: str | None = None,
        upsert: bool = True,
    ) -> None:
        """Upload *data* to *path*.

        With ``upsert=True`` an existing object is overwritten; concurrent
        writers to the same path race to last-write-wins.
        """
        max_age = cache_control if cache_control is not None else self._config.cache_control
        await self._send(
            "upload",
            "POST",
            self._object_url(path),
            path,
            content=data,
            headers={
                "Content-Type": content_type,
                "Cache-Control": f"max-age={max_age}",
                "x-upsert": "true" if upsert else "false",
            },
        )
        log.debug(
            "Object uploaded",
            extra={"extra_fields": {"op": "upload", "path": path, "size_bytes": len(data)}},
        )

    async def download(self, path: str) -> bytes:
        response = await self._send("download", "GET", self._object_url(path), path)
        return response.content

    async def list(
        self,
        prefix: str,
        *,
        limit: int | None = None,
        offset: int = 0,
        sort_by: str = "name",
    ) -> list[StoreEntry]:
        """List the direct children of *prefix*, sorted ascending by *sort_by*."""
        body = {
            "prefix": prefix.strip("/"),
            "limit": limit if limit is not None else self._config.list_limit,
            "offset": offset,
            "sortBy": {"column": sort_by, "order": "asc"},
        }
        response = await self._send(
            "list",
            "POST",
            f"{self._base}/object/list/{self._config.bucket}",
            prefix,
            json=body,
        )
        items = response.json()
        if not isinstance(items, list):
            return []
        return [parse_entry(item) for item in items if isinstance(item, dict)]

    async def remove(self, paths: list[str]) -> list[str]:
        """Delete *paths* in batches of ``config.remove_batch_size``.

        Returns the paths the store reported as deleted.
        """
        removed: list[str] = []
        for batch in chunked(list(paths), self._config.remove_batch_size):
            response = await self._send(
                "remove",
                "DELETE",
                f"{self._base}/object/{self._config.bucket}",
                batch[0],
                json={"prefixes": batch},
            )
            try:
                items = response.json()
            except ValueError:
                items = []
            if isinstance(items, list):
                removed.extend(
                    str(item["name"]) for item in items
                    if isinstance(item, dict) and item.get("name")
                )
        return removed

    def public_url(self, path: str) -> str:
        return f"{self._config.public_url_prefix}{path.lstrip('/')}"

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> SupabaseStorage:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
