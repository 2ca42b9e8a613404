"""Image decoding and size/quality negotiation.

Exports
-------
negotiate
    Downscale and re-encode an image until it fits a byte budget.
probe
    Read the format and dimensions from an image header.
target_size
    Compute the bounded output dimensions for an image.
Transcoder
    Run the negotiator on a bounded worker pool from async code.
"""

from .transcode import Transcoder, negotiate, probe, target_size

__all__ = [
    "Transcoder",
    "negotiate",
    "probe",
    "target_size",
]
