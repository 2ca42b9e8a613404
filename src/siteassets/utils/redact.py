"""Credential and payload redaction for safe logging.

Object-store debug dumps pass through :func:`redact` before they are
written anywhere.  It enforces the following rules:

* Values under **sensitive keys** (``authorization``, ``apikey``,
  ``service_key``, ...) are replaced with ``<redacted>``.
* The known **secret is scrubbed** from every string in the tree.
* **Binary values** (``bytes`` / ``bytearray``) become ``<binary:N_bytes>``
  so image bodies never land in logs.
"""

from __future__ import annotations

import copy
import re
from typing import Any

# If any of these appear in a key name (case-insensitive), the value is
# redacted.
_SENSITIVE_KEY_PATTERNS: frozenset[str] = frozenset({
    "authorization",
    "apikey",
    "api_key",
    "api-key",
    "service_key",
    "secret",
    "token",
    "password",
    "cookie",
})


def _mask_secret(value: str, secret: str | None) -> str:
    """Replace the secret and bearer credentials with placeholders."""
    if secret and secret in value:
        suffix = secret[-4:] if len(secret) >= 8 else "****"
        value = value.replace(secret, f"<redacted:...{suffix}>")
    return re.sub(r"(Bearer\s+)\S+", lambda m: f"{m.group(1)}<redacted>", value)


def _redact_value(value: Any, secret: str | None) -> Any:
    if isinstance(value, dict):
        return _redact_dict(value, secret)
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, secret) for item in value]
    if isinstance(value, (bytes, bytearray)):
        return f"<binary:{len(value)}_bytes>"
    if isinstance(value, str):
        return _mask_secret(value, secret)
    return value


def _redact_dict(d: dict, secret: str | None) -> dict:
    result: dict = {}
    for key, value in d.items():
        key_lower = key.lower() if isinstance(key, str) else ""
        if any(pat in key_lower for pat in _SENSITIVE_KEY_PATTERNS):
            result[key] = "<redacted>"
        else:
            result[key] = _redact_value(value, secret)
    return result


def redact(payload: dict, secret: str | None = None) -> dict:
    """Return a deep copy of *payload* with credentials and binary bodies
    removed.  The original *payload* is never mutated.

    Examples
    --------
    >>> redact({"apikey": "sb_secret_abcd"})
    {'apikey': '<redacted>'}
    >>> redact({"body": b"\\x89PNG"})
    {'body': '<binary:4_bytes>'}
    """
    safe = copy.deepcopy(payload)
    return _redact_dict(safe, secret)
