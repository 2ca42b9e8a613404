"""Object store contract and its Supabase Storage implementation."""

from .base import ObjectStore
from .errors_map import network_error, raise_for_status
from .supabase import SupabaseStorage, parse_entry

__all__ = [
    "ObjectStore",
    "SupabaseStorage",
    "network_error",
    "parse_entry",
    "raise_for_status",
]
