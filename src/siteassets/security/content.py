"""Content authentication by magic-byte sniffing.

The leading bytes of an image decide its type.  A caller-declared
``Content-Type`` or file extension is only ever a hint: when it disagrees
with the sniffed signature the **detected type wins** for every storage
decision (extension, stored MIME type), and bytes that match no known
signature are rejected outright.
"""

from __future__ import annotations

from siteassets.errors import ContentSpoofingError
from siteassets.models import ImageFormat
from siteassets.observability import get_logger, log_security_event

log = get_logger("siteassets.security")

# Map of magic bytes to formats.  WEBP needs a second check at offset 8.
_MAGIC_BYTES: list[tuple[bytes, ImageFormat]] = [
    (b"\xff\xd8\xff", ImageFormat.JPEG),
    (b"\x89PNG", ImageFormat.PNG),
    (b"GIF8", ImageFormat.GIF),
    (b"RIFF", ImageFormat.WEBP),
]

_MIME_ALIASES: dict[str, str] = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
}


def sniff_format(data: bytes) -> ImageFormat | None:
    """Detect the image format from the first bytes of *data*.

    Returns ``None`` when no supported signature matches.
    """
    if len(data) < 4:
        return None
    for magic, fmt in _MAGIC_BYTES:
        if data[: len(magic)] == magic:
            if fmt is ImageFormat.WEBP and data[8:12] != b"WEBP":
                continue
            return fmt
    return None


def normalize_mime(content_type: str | None) -> str | None:
    """Lower-case *content_type*, drop parameters, and fold known aliases.

    >>> normalize_mime("Image/JPG; charset=binary")
    'image/jpeg'
    """
    if not content_type:
        return None
    mime = content_type.split(";", 1)[0].strip().lower()
    return _MIME_ALIASES.get(mime, mime) or None


def is_valid_image_mime(content_type: str | None, allowed: list[str]) -> bool:
    """Return ``True`` if the declared type is one of the *allowed* MIMEs."""
    mime = normalize_mime(content_type)
    if mime is None:
        return False
    return mime in {normalize_mime(m) for m in allowed}


def authenticate(
    data: bytes,
    declared_type: str | None = None,
    *,
    source: str | None = None,
) -> ImageFormat:
    """Authenticate *data* as a supported image.

    Parameters
    ----------
    data:
        The raw bytes as received.
    declared_type:
        The caller's ``Content-Type`` (or a MIME guessed from an extension).
        Only used for logging a mismatch; it never overrides the sniffed
        type.
    source:
        URL or filename, for diagnostics.

    Returns
    -------
    ImageFormat
        The detected format.

    Raises
    ------
    ContentSpoofingError
        If no supported signature matches.
    """
    detected = sniff_format(data)
    if detected is None:
        log_security_event(
            log,
            "Rejected content with unknown signature",
            reason="magic_bytes",
            declared_type=declared_type,
            source=source,
            size_bytes=len(data),
        )
        raise ContentSpoofingError(
            message="Content does not match any supported image signature",
            context={"declared_type": declared_type, "size_bytes": len(data), "source": source},
        )

    declared = normalize_mime(declared_type)
    if declared is not None and declared != detected.mime:
        log.info(
            "Declared type differs from detected content; using detected type",
            extra={
                "extra_fields": {
                    "op": "authenticate",
                    "declared_type": declared,
                    "detected_type": detected.mime,
                    "source": source,
                }
            },
        )

    return detected
