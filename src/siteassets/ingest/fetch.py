"""Bounded download of remote images.

:func:`fetch_image` streams a remote body with a total time bound and a
hard byte cap.  Redirects are followed by hand so that every hop passes
the fetch guard again; a public URL cannot bounce the fetch into private
address space.
"""

from __future__ import annotations

import asyncio
from urllib.parse import urljoin

import httpx

from siteassets.config import SiteAssetsConfig
from siteassets.errors import (
    FetchError,
    FetchTimeoutError,
    ImageSizeError,
    ImageTypeError,
    InvalidInputError,
    TransientIOError,
)
from siteassets.security import check_url, is_valid_image_mime, normalize_mime
from siteassets.observability import get_logger

log = get_logger("siteassets.ingest")

MAX_REDIRECTS = 5

_REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
_TRANSIENT_STATUSES = frozenset({408, 425, 429})


async def _read_capped(response: httpx.Response, url: str, max_bytes: int) -> bytes:
    declared = response.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > max_bytes:
        raise ImageSizeError(
            message=f"Remote image declares {declared} bytes, above the {max_bytes} byte cap",
            context={"url": url, "size_bytes": int(declared), "max_bytes": max_bytes},
        )

    buf = bytearray()
    async for chunk in response.aiter_bytes():
        buf.extend(chunk)
        if len(buf) > max_bytes:
            raise ImageSizeError(
                message=f"Remote image exceeds the {max_bytes} byte cap",
                context={"url": url, "size_bytes": len(buf), "max_bytes": max_bytes},
            )
    return bytes(buf)


async def _fetch(
    client: httpx.AsyncClient,
    url: str,
    config: SiteAssetsConfig,
) -> tuple[bytes, str | None]:
    headers = {
        "User-Agent": config.fetch_user_agent,
        "Accept": "image/*",
    }
    current = url
    for _ in range(MAX_REDIRECTS + 1):
        async with client.stream(
            "GET",
            current,
            headers=headers,
            follow_redirects=False,
            timeout=httpx.Timeout(config.fetch_timeout_seconds),
        ) as response:
            status = response.status_code

            if status in _REDIRECT_STATUSES:
                location = response.headers.get("location")
                if not location:
                    raise FetchError(
                        message=f"Redirect without Location from {current!r}",
                        context={"url": current, "status_code": status},
                    )
                current = check_url(urljoin(current, location), op="fetch_redirect")
                continue

            if status in _TRANSIENT_STATUSES or status >= 500:
                raise TransientIOError(
                    message=f"Remote host unavailable (HTTP {status}) for {current!r}",
                    context={"url": current, "status_code": status, "op": "fetch"},
                )
            if not 200 <= status < 300:
                raise FetchError(
                    message=f"Remote host answered HTTP {status} for {current!r}",
                    context={"url": current, "status_code": status},
                )

            content_type = response.headers.get("content-type")
            if not is_valid_image_mime(content_type, config.allowed_mimes):
                raise ImageTypeError(
                    message=f"Remote content type {content_type!r} is not an accepted image type",
                    context={"url": current, "content_type": content_type},
                )

            data = await _read_capped(response, current, config.fetch_max_bytes)
            return data, normalize_mime(content_type)

    raise FetchError(
        message=f"Too many redirects fetching {url!r}",
        context={"url": url, "max_redirects": MAX_REDIRECTS},
    )


async def fetch_image(
    client: httpx.AsyncClient,
    url: str,
    config: SiteAssetsConfig,
) -> tuple[bytes, str | None]:
    """Download the image at *url*.

    The caller must already have passed *url* through
    :func:`~siteassets.security.check_url`.

    Parameters
    ----------
    client:
        Shared :class:`httpx.AsyncClient` for remote fetches.
    url:
        Source URL.
    config:
        Supplies the timeout, byte cap, accepted MIME types and
        ``User-Agent``.

    Returns
    -------
    tuple[bytes, str | None]
        The body and its normalized declared ``Content-Type``.

    Raises
    ------
    FetchTimeoutError
        If the whole download takes longer than ``fetch_timeout_seconds``.
    TransientIOError
        On network errors, 408/425/429 and 5xx.
    FetchError
        On any other non-2xx status or a redirect loop.
    ImageTypeError
        If the ``Content-Type`` is not an accepted image MIME type.
    ImageSizeError
        If the body exceeds ``fetch_max_bytes``.
    UnsafeUrlError
        If a redirect points at a disallowed address.
    InvalidInputError
        If the URL, or a redirect target, cannot be parsed by the HTTP client.
    """
    try:
        return await asyncio.wait_for(
            _fetch(client, url, config),
            timeout=config.fetch_timeout_seconds,
        )
    except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
        log.warning(
            "Remote fetch timed out",
            extra={"extra_fields": {"op": "fetch", "url": url[:200], "timeout_seconds": config.fetch_timeout_seconds}},
        )
        raise FetchTimeoutError(
            message=f"Fetching {url!r} timed out after {config.fetch_timeout_seconds}s",
            context={"url": url, "timeout_seconds": config.fetch_timeout_seconds},
            cause=exc,
        ) from exc
    except httpx.InvalidURL as exc:
        raise InvalidInputError(
            message=f"Source URL cannot be fetched: {exc}",
            context={"field": "url", "value": url[:200]},
            cause=exc,
        ) from exc
    except httpx.HTTPError as exc:
        log.warning(
            "Remote fetch network error",
            extra={"extra_fields": {"op": "fetch", "url": url[:200], "error": str(exc)}},
        )
        raise TransientIOError(
            message=f"Network error fetching {url!r}: {exc}",
            context={"url": url, "op": "fetch"},
            cause=exc,
        ) from exc
