"""Remote fetch safety guard.

Screens attacker-supplied source URLs before any network call is made:
only ``http`` and ``https`` are accepted, and hosts that lexically denote
loopback, unspecified or private address space are refused.

This is a pre-DNS, string-based check: numeric hosts are normalised the
way the system resolver reads them, but it does **not** defend against a
public hostname that resolves (or later re-resolves) to a private address;
stronger guarantees need the resolved peer address re-checked at connect
time.
"""

from __future__ import annotations

import ipaddress
import re
import socket
from urllib.parse import urlparse

import httpx

from siteassets.errors import UnsafeUrlError
from siteassets.observability import get_logger, log_security_event

log = get_logger("siteassets.security")

_ALLOWED_SCHEMES = frozenset({"http", "https"})
_BLOCKED_HOSTS = frozenset({"localhost", "127.0.0.1", "0.0.0.0", "::1", "::"})
_PRIVATE_PREFIXES: tuple[str, ...] = (
    "10.",
    "192.168.",
    *(f"172.{octet}." for octet in range(16, 32)),
)
_NUMERIC_HOST_RE = re.compile(r"[0-9][0-9a-fx.]*")


def _host_address(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """Parse *host* as an IP literal.

    Besides canonical literals this accepts every IPv4 spelling the system
    resolver does: a bare integer (``2130706433``), short forms
    (``127.1``) and hex or octal parts (``0x7f000001``, ``0177.0.0.1``).
    IPv4-mapped IPv6 literals are unwrapped to their IPv4 address.
    """
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        if not _NUMERIC_HOST_RE.fullmatch(host):
            return None
        try:
            return ipaddress.IPv4Address(socket.inet_aton(host))
        except OSError:
            return None
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def unsafe_reason(url: object) -> str | None:
    """Return why *url* must not be fetched, or ``None`` if it may be.

    Reasons: ``malformed``, ``scheme``, ``loopback``, ``private_address``.
    """
    if not isinstance(url, str) or not url.strip():
        return "malformed"
    try:
        parsed = urlparse(url.strip())
        host = parsed.hostname
    except ValueError:
        return "malformed"

    if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
        return "scheme"
    if not host:
        return "malformed"

    host = host.lower().rstrip(".")
    if host in _BLOCKED_HOSTS or host.endswith(".localhost"):
        return "loopback"
    if host.startswith(_PRIVATE_PREFIXES):
        return "private_address"

    address = _host_address(host)
    if address is not None:
        if address.is_loopback or address.is_unspecified:
            return "loopback"
        if address.is_private or address.is_link_local or address.is_reserved:
            return "private_address"

    # Control characters and the like survive urlparse but not the client.
    try:
        httpx.URL(url)
    except httpx.InvalidURL:
        return "malformed"

    return None


def is_safe_url(url: object) -> bool:
    """Return ``True`` if *url* passes the scheme and address-space checks.

    Examples
    --------
    >>> is_safe_url("https://example.com/a.jpg")
    True
    >>> is_safe_url("http://10.1.2.3/x")
    False
    """
    return unsafe_reason(url) is None


def check_url(url: object, *, op: str = "fetch") -> str:
    """Return *url* if it is safe to fetch; otherwise log and raise
    :class:`UnsafeUrlError`."""
    reason = unsafe_reason(url)
    if reason is not None:
        shown = str(url)[:200]
        log_security_event(log, "Rejected unsafe source URL", reason=reason, op=op, url=shown)
        raise UnsafeUrlError(
            message=f"Source URL is not allowed ({reason}): {shown!r}",
            context={"url": shown, "reason": reason},
        )
    return url  # type: ignore[return-value]
