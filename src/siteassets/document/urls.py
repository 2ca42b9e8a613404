"""Find and rewrite image URLs inside configuration documents.

Storage URLs look like::

    {storage_url}/storage/v1/object/public/{bucket}/{tenant}/{id}/{file}

:func:`extract_urls` returns the bucket-relative part of every such string
leaf; :func:`rewrite_urls` swaps whole string leaves according to a
mapping.  Both walk the typed tree from :mod:`siteassets.document.tree`.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from .tree import from_python, map_strings, to_python, walk_strings

# Object keys whose http(s) string values are treated as images even
# without an image-like URL.  Compared case-insensitively.
IMAGE_KEYS: frozenset[str] = frozenset({
    "url",
    "src",
    "image",
    "imageurl",
    "image_url",
    "photo",
    "photourl",
    "photo_url",
    "propertyimage",
    "backgroundimage",
    "floorplan_url",
    "virtual_tour_url",
})

_IMAGE_EXT_RE = re.compile(r"\.(jpg|jpeg|png|gif|webp)(\?|#|$)", re.IGNORECASE)
_IMAGE_HINTS: tuple[str, ...] = ("/image", "/photo", "/img")


def storage_path_from_url(url: str, public_prefix: str) -> str | None:
    """Return the bucket-relative part of *url*, or ``None`` if *url* is not
    under *public_prefix*.  Query strings and fragments are dropped."""
    if not url.startswith(public_prefix):
        return None
    rest = re.split(r"[?#]", url[len(public_prefix):], maxsplit=1)[0]
    return rest or None


def extract_urls(doc: Any, public_prefix: str) -> set[str]:
    """Return the storage paths referenced by *doc*.

    Parameters
    ----------
    doc:
        Decoded JSON document.
    public_prefix:
        The public URL prefix of the bucket, ending in ``/`` (see
        :attr:`SiteAssetsConfig.public_url_prefix`).

    Returns
    -------
    set[str]
        Bucket-relative paths with any query string or fragment removed.
        The paths are **not** validated; callers sanitize before use.
    """
    paths: set[str] = set()
    for _, value in walk_strings(from_python(doc)):
        rel = storage_path_from_url(value, public_prefix)
        if rel is not None:
            paths.add(rel)
    return paths


def extract_public_urls(doc: Any, public_prefix: str) -> set[str]:
    """Return every string leaf of *doc* that is a URL in our bucket."""
    return {
        value
        for _, value in walk_strings(from_python(doc))
        if storage_path_from_url(value, public_prefix) is not None
    }


def looks_like_image_url(value: str) -> bool:
    """Heuristic: an image extension, or ``/image``, ``/photo`` or ``/img``
    somewhere in the URL."""
    return bool(_IMAGE_EXT_RE.search(value)) or any(h in value for h in _IMAGE_HINTS)


def extract_external_image_urls(doc: Any, public_prefix: str | None = None) -> list[str]:
    """Return the http(s) image URLs in *doc* that should be mirrored.

    A string leaf qualifies when it is an http(s) URL and either looks
    like an image (:func:`looks_like_image_url`) or sits directly under
    one of :data:`IMAGE_KEYS`.  URLs already under *public_prefix* are
    skipped.  The result is de-duplicated in document order.
    """
    seen: dict[str, None] = {}
    for key, value in walk_strings(from_python(doc)):
        if not value.startswith(("http://", "https://")):
            continue
        if public_prefix and value.startswith(public_prefix):
            continue
        if looks_like_image_url(value) or (key is not None and key.lower() in IMAGE_KEYS):
            seen.setdefault(value, None)
    return list(seen)


def rewrite_urls(doc: Any, mapping: Mapping[str, str]) -> Any:
    """Return a copy of *doc* with every string leaf found in *mapping*
    replaced by its mapped value.

    Only whole-string matches are replaced.  Keys, other values, object
    key order and array order are left exactly as they were.
    """
    if not mapping:
        return to_python(from_python(doc))
    return to_python(map_strings(from_python(doc), lambda s: mapping.get(s, s)))
