"""Full error hierarchy for the siteassets pipeline.

Every public error class inherits from SiteAssetsError. Each carries a
machine-readable ``code`` (from :class:`ErrorCode`), a human-readable
``message``, an optional structured ``context`` dict, and an optional
``cause`` (chained exception).

Each class also declares ``retryable``.  Only :class:`TransientIOError`
and its subclasses are retryable; the pipeline never retries on its own,
the flag tells the *caller* whether re-submitting the same request can
succeed.

Error codes are defined as a :class:`str` enum so that they serialise
naturally to JSON and can be matched with simple ``==`` comparisons.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar

# ---------------------------------------------------------------------------
# Error code enum
# ---------------------------------------------------------------------------

class ErrorCode(str, Enum):
    """Machine-readable error codes for every error the pipeline can raise."""

    INVALID_INPUT = "INVALID_INPUT"
    SECURITY_VIOLATION = "SECURITY_VIOLATION"
    PATH_TRAVERSAL = "PATH_TRAVERSAL"
    UNSAFE_URL = "UNSAFE_URL"
    CONTENT_SPOOFING = "CONTENT_SPOOFING"
    IMAGE_TYPE_ERROR = "IMAGE_TYPE_ERROR"
    IMAGE_SIZE_ERROR = "IMAGE_SIZE_ERROR"
    IMAGE_DECODE_ERROR = "IMAGE_DECODE_ERROR"
    TRANSIENT_IO = "TRANSIENT_IO"
    FETCH_TIMEOUT = "FETCH_TIMEOUT"
    FETCH_ERROR = "FETCH_ERROR"
    STORE_ERROR = "STORE_ERROR"
    STORE_NOT_FOUND = "STORE_NOT_FOUND"
    STORE_AUTH_ERROR = "STORE_AUTH_ERROR"


# ---------------------------------------------------------------------------
# Base error
# ---------------------------------------------------------------------------

class SiteAssetsError(Exception):
    """Base exception for all siteassets errors.

    Parameters
    ----------
    message:
        A developer-friendly description of what went wrong.
    context:
        Arbitrary structured data providing extra diagnostic detail.
        Keys and expected types are documented per subclass.
    cause:
        The underlying exception, if this error wraps another.
    code:
        Overrides the class's :attr:`default_code`.  Subclasses normally
        leave it unset.
    """

    default_code: ClassVar[str] = ""
    retryable: ClassVar[bool] = False

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
        *,
        code: str | None = None,
    ) -> None:
        self.code: str = code or self.default_code
        self.message: str = message
        self.context: dict[str, Any] = context or {}
        self.cause: Exception | None = cause
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    def __repr__(self) -> str:
        ctx = f", context={self.context!r}" if self.context else ""
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r}{ctx})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

class InvalidInputError(SiteAssetsError):
    """A path, URL or identifier is malformed.  Raised before any I/O.

    Context keys: ``field``, ``value``.
    """

    default_code = ErrorCode.INVALID_INPUT


# ---------------------------------------------------------------------------
# Security violations
# ---------------------------------------------------------------------------

class SecurityViolationError(SiteAssetsError):
    """Base class for rejected hostile input.

    Never retried and never "fixed up" by the pipeline.  Raised directly
    for cross-tenant access; context varies by subclass.
    """

    default_code = ErrorCode.SECURITY_VIOLATION


class PathTraversalError(SecurityViolationError):
    """A storage path failed the namespace grammar or escapes its tenant.

    Context keys: ``path``, ``namespace``.
    """

    default_code = ErrorCode.PATH_TRAVERSAL


class UnsafeUrlError(SecurityViolationError):
    """A source URL targets a disallowed scheme or address space.

    Context keys: ``url``, ``reason``.
    """

    default_code = ErrorCode.UNSAFE_URL


class ContentSpoofingError(SecurityViolationError):
    """The leading bytes do not match any supported image signature.

    Context keys: ``declared_type``, ``size_bytes``.
    """

    default_code = ErrorCode.CONTENT_SPOOFING


# ---------------------------------------------------------------------------
# Image errors
# ---------------------------------------------------------------------------

class ImageTypeError(SiteAssetsError):
    """The declared ``Content-Type`` is not an accepted image MIME type.

    Context keys: ``url``, ``content_type``.
    """

    default_code = ErrorCode.IMAGE_TYPE_ERROR


class ImageSizeError(SiteAssetsError):
    """The input exceeds a hard size ceiling (not the transcode budget).

    Context keys: ``size_bytes``, ``max_bytes``.
    """

    default_code = ErrorCode.IMAGE_SIZE_ERROR


class ImageDecodeError(SiteAssetsError):
    """The image bytes cannot be decoded (corrupt or truncated input).

    Context keys: ``size_bytes``, ``reason``.
    """

    default_code = ErrorCode.IMAGE_DECODE_ERROR


# ---------------------------------------------------------------------------
# I/O errors
# ---------------------------------------------------------------------------

class TransientIOError(SiteAssetsError):
    """A network or store failure that may succeed if the caller retries.

    Context keys: ``url`` or ``path``, ``status_code``, ``op``.
    """

    default_code = ErrorCode.TRANSIENT_IO
    retryable: ClassVar[bool] = True


class FetchTimeoutError(TransientIOError):
    """A remote fetch did not complete within the configured bound.

    Context keys: ``url``, ``timeout_seconds``.
    """

    default_code = ErrorCode.FETCH_TIMEOUT


class FetchError(SiteAssetsError):
    """The remote host answered with a non-success status.

    Context keys: ``url``, ``status_code``.
    """

    default_code = ErrorCode.FETCH_ERROR


class StoreError(SiteAssetsError):
    """The object store rejected a request.

    Context keys: ``op``, ``path``, ``status_code``.
    """

    default_code = ErrorCode.STORE_ERROR


class StoreNotFoundError(StoreError):
    """The requested object does not exist.

    Context keys: ``op``, ``path``.
    """

    default_code = ErrorCode.STORE_NOT_FOUND


class StoreAuthError(StoreError):
    """The store refused the service credential (401 / 403)."""

    default_code = ErrorCode.STORE_AUTH_ERROR
