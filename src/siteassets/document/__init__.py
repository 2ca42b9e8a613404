"""Structural access to configuration documents.

Exports
-------
from_python / to_python
    Convert between decoded JSON and the typed node tree.
walk_strings / map_strings
    Visit or replace every string leaf.
extract_urls / extract_public_urls
    Find storage references in a document.
extract_external_image_urls
    Find remote images that should be mirrored into storage.
rewrite_urls
    Replace whole-string URL leaves according to a mapping.
"""

from .tree import (
    JsonArray,
    JsonBool,
    JsonNode,
    JsonNull,
    JsonNumber,
    JsonObject,
    JsonString,
    from_python,
    map_strings,
    to_python,
    walk_strings,
)
from .urls import (
    IMAGE_KEYS,
    extract_external_image_urls,
    extract_public_urls,
    extract_urls,
    looks_like_image_url,
    rewrite_urls,
    storage_path_from_url,
)

__all__ = [
    "IMAGE_KEYS",
    "JsonArray",
    "JsonBool",
    "JsonNode",
    "JsonNull",
    "JsonNumber",
    "JsonObject",
    "JsonString",
    "extract_external_image_urls",
    "extract_public_urls",
    "extract_urls",
    "from_python",
    "looks_like_image_url",
    "map_strings",
    "rewrite_urls",
    "storage_path_from_url",
    "to_python",
    "walk_strings",
]
