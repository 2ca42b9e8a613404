"""Ingestion of remote and uploaded images into tenant folders.

Exports
-------
IngestionPipeline
    URL mirroring, direct uploads, and their batch variants.
fetch_image
    Bounded, guard-checked download of a remote image.
"""

from .fetch import fetch_image
from .pipeline import IngestionPipeline

__all__ = [
    "IngestionPipeline",
    "fetch_image",
]
