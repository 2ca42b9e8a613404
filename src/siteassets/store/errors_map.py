"""Classification of object-store failures into typed errors.

Two pure helpers used by the HTTP store:

* :func:`raise_for_status` -- map a non-2xx response to the matching
  :class:`~siteassets.errors.StoreError` or
  :class:`~siteassets.errors.TransientIOError`.
* :func:`network_error` -- wrap an ``httpx`` transport exception.

Nothing here retries.  Transient failures are surfaced with
``retryable = True`` and the caller decides.
"""

from __future__ import annotations

import httpx

from siteassets.errors import (
    SiteAssetsError,
    StoreAuthError,
    StoreError,
    StoreNotFoundError,
    TransientIOError,
)

# HTTP status codes that describe a temporary condition.
TRANSIENT_STATUSES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})

# Network-level exceptions that describe a temporary condition.
TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
)


def is_transient_status(status_code: int) -> bool:
    return status_code in TRANSIENT_STATUSES or status_code >= 500


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict):
        for key in ("message", "error", "msg"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return response.text[:500]


def raise_for_status(response: httpx.Response, op: str, path: str) -> None:
    """Raise the typed error for a non-2xx *response*; return on 2xx.

    The storage API reports a missing object as either ``404`` or a
    ``400`` whose message says "not found"; both become
    :class:`StoreNotFoundError`.

    Raises
    ------
    StoreAuthError
        On 401 and 403.
    StoreNotFoundError
        On a missing object.
    TransientIOError
        On 408, 429 and 5xx.
    StoreError
        On any other 4xx.
    """
    status = response.status_code
    if 200 <= status < 300:
        return

    store_message = _error_message(response)
    ctx = {"op": op, "path": path, "status_code": status}

    if status in (401, 403):
        raise StoreAuthError(
            message=f"Store refused credentials on {op} {path}: {store_message}",
            context={"op": op, "status_code": status},
        )
    if status == 404 or (status == 400 and "not found" in store_message.lower()):
        raise StoreNotFoundError(
            message=f"Object not found on {op} {path}: {store_message}",
            context={"op": op, "path": path},
        )
    if is_transient_status(status):
        raise TransientIOError(
            message=f"Store unavailable on {op} {path} (HTTP {status}): {store_message}",
            context=ctx,
        )
    raise StoreError(
        message=f"Store error {status} on {op} {path}: {store_message}",
        context=ctx,
    )


def network_error(exc: Exception, op: str, path: str) -> SiteAssetsError:
    """Return the typed error for an ``httpx`` exception raised by *op*."""
    if isinstance(exc, TRANSIENT_EXCEPTIONS):
        return TransientIOError(
            message=f"Network error on {op} {path}: {exc}",
            context={"op": op, "path": path},
            cause=exc,
        )
    return StoreError(
        message=f"Request failed on {op} {path}: {exc}",
        context={"op": op, "path": path},
        cause=exc,
    )
