"""Storage path grammar and filename helpers.

Every object the pipeline writes, reads or deletes lives at a path of the
form::

    path      := namespace "/" uuid ["/" filename]
    namespace := "temp-preview" | uuid
    filename  := [A-Za-z0-9._-]+ "." (jpg|jpeg|png|gif|webp)

:func:`sanitize_path` is the single gate for that grammar.  It returns
``None`` for anything that does not conform; callers must treat ``None``
as a hard rejection and never substitute a default path.
"""

from __future__ import annotations

import re
import secrets
import time

from siteassets.errors import InvalidInputError, PathTraversalError
from siteassets.models import StoragePath
from siteassets.observability import get_logger, log_security_event

log = get_logger("siteassets.security")

PREVIEW_SEGMENT = "temp-preview"

VALID_EXTENSIONS: frozenset[str] = frozenset({"jpg", "jpeg", "png", "gif", "webp"})

_UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
    re.IGNORECASE,
)
_FILENAME_RE = re.compile(r"[A-Za-z0-9._-]+\.(jpg|jpeg|png|gif|webp)")
_SLASHES_RE = re.compile(r"/+")

_MAX_FILENAME_LENGTH = 255


def is_uuid(value: object) -> bool:
    """Return ``True`` if *value* is a canonical hyphenated UUID string."""
    return isinstance(value, str) and bool(_UUID_RE.fullmatch(value))


def require_uuid(value: object, field: str) -> str:
    """Return *value* unchanged, or raise :class:`InvalidInputError`."""
    if not is_uuid(value):
        raise InvalidInputError(
            message=f"{field} must be a UUID",
            context={"field": field, "value": str(value)[:64]},
        )
    return value  # type: ignore[return-value]


def is_valid_filename(filename: str) -> bool:
    """Filenames need a non-empty stem and a lowercase image extension."""
    return bool(_FILENAME_RE.fullmatch(filename))


def sanitize_path(raw: object) -> StoragePath | None:
    """Validate *raw* against the storage path grammar.

    Steps: drop ``..`` sequences, collapse repeated ``/``, trim leading and
    trailing ``/``; reject if any traversal marker survives; then accept
    exactly two or three segments whose first is ``temp-preview`` or a
    UUID, whose second is a UUID, and whose optional third is a valid
    image filename.

    Returns
    -------
    StoragePath | None
        The parsed path, or ``None`` on any violation.
    """
    if not raw or not isinstance(raw, str):
        return None

    normalized = raw.replace("..", "")
    normalized = _SLASHES_RE.sub("/", normalized).strip("/")

    if ".." in normalized or normalized.startswith("/") or "//" in normalized:
        return None

    parts = normalized.split("/")
    if len(parts) < 2 or len(parts) > 3:
        return None

    tenant, folder_id = parts[0], parts[1]
    if tenant != PREVIEW_SEGMENT and not is_uuid(tenant):
        return None
    if not is_uuid(folder_id):
        return None

    filename: str | None = None
    if len(parts) == 3:
        filename = parts[2]
        if not is_valid_filename(filename):
            return None

    return StoragePath(tenant=tenant, folder_id=folder_id, filename=filename)


def require_path(raw: object, *, op: str) -> StoragePath:
    """Like :func:`sanitize_path` but raise :class:`PathTraversalError`.

    The rejection is logged as a security event.
    """
    path = sanitize_path(raw)
    if path is None:
        shown = str(raw)[:200]
        log_security_event(log, "Rejected storage path", reason="invalid_path", op=op, path=shown)
        raise PathTraversalError(
            message=f"Storage path rejected: {shown!r}",
            context={"path": shown, "op": op},
        )
    return path


def preview_folder(preview_id: str) -> StoragePath:
    """Folder holding a draft preview's assets: ``temp-preview/{id}``."""
    return StoragePath(tenant=PREVIEW_SEGMENT, folder_id=require_uuid(preview_id, "preview_id"))


def site_folder(site_id: str, folder_id: str | None = None) -> StoragePath:
    """Folder under a site namespace: ``{siteId}/{folderId}``.

    Direct uploads to a site use the site id as the folder id; claimed
    assets keep the folder id they had under ``temp-preview``.
    """
    site_id = require_uuid(site_id, "site_id")
    if folder_id is None:
        folder_id = site_id
    return StoragePath(tenant=site_id, folder_id=require_uuid(folder_id, "folder_id"))


def is_valid_image_extension(ext: str) -> bool:
    return ext.lower().lstrip(".") in VALID_EXTENSIONS


def sanitize_filename(filename: str) -> str:
    """Make an uploader-supplied file name safe for the path grammar.

    Path separators are dropped, characters outside ``[A-Za-z0-9._-]``
    become ``_``, runs of dots collapse to one, leading and trailing dots
    are stripped, the extension is lowercased, an invalid or missing
    extension gets ``.jpg`` appended, and the result is capped at 255
    characters with its extension preserved.
    """
    sanitized = re.sub(r"[/\\]", "", filename)
    sanitized = re.sub(r"[^A-Za-z0-9._-]", "_", sanitized)
    sanitized = re.sub(r"\.{2,}", ".", sanitized).strip(".")

    stem, _, ext = sanitized.rpartition(".")
    ext = ext.lower()
    if stem and is_valid_image_extension(ext):
        sanitized = f"{stem}.{ext}"
    else:
        ext = "jpg"
        sanitized = f"{sanitized or 'image'}.jpg"

    if len(sanitized) > _MAX_FILENAME_LENGTH:
        stem = sanitized[: _MAX_FILENAME_LENGTH - len(ext) - 1].rstrip(".")
        sanitized = f"{stem}.{ext}"

    return sanitized


def generate_secure_filename(extension: str = "jpg") -> str:
    """Return ``{epoch_ms}-{16 random hex chars}.{ext}``.

    The random part comes from :mod:`secrets`; unknown extensions fall
    back to ``jpg``.
    """
    ext = extension.lower().lstrip(".")
    if not is_valid_image_extension(ext):
        ext = "jpg"
    return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}.{ext}"
