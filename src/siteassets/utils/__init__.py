from .chunk import chunked
from .redact import redact

__all__ = [
    "chunked",
    "redact",
]
