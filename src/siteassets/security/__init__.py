"""Input gates: path grammar, remote-fetch guard, and content authentication.

Exports
-------
sanitize_path / require_path
    Validate a storage path against the namespace grammar.
is_safe_url / check_url
    Screen a source URL before fetching it.
authenticate / sniff_format
    Detect an image type from its magic bytes.
generate_secure_filename / sanitize_filename
    Produce grammar-conforming file names.
"""

from .content import authenticate, is_valid_image_mime, normalize_mime, sniff_format
from .fetch_guard import check_url, is_safe_url, unsafe_reason
from .paths import (
    PREVIEW_SEGMENT,
    generate_secure_filename,
    is_uuid,
    is_valid_image_extension,
    preview_folder,
    require_path,
    require_uuid,
    sanitize_filename,
    sanitize_path,
    site_folder,
)

__all__ = [
    "PREVIEW_SEGMENT",
    "authenticate",
    "check_url",
    "generate_secure_filename",
    "is_safe_url",
    "is_uuid",
    "is_valid_image_extension",
    "is_valid_image_mime",
    "normalize_mime",
    "preview_folder",
    "require_path",
    "require_uuid",
    "sanitize_filename",
    "sanitize_path",
    "site_folder",
    "sniff_format",
    "unsafe_reason",
]
