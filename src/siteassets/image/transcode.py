"""Size/quality negotiation for stored images.

:func:`negotiate` turns arbitrary input bytes into an image that fits a
byte budget:

1. Decode the input, refusing anything above the pixel ceiling.
2. Apply the EXIF orientation, then drop every piece of metadata.
3. Downscale so the longest side is at most ``max_dimension`` (never
   upscale; aspect ratio kept).
4. Encode at each quality of the ladder, highest first, and return the
   first result within budget.
5. If even the lowest quality is over budget, return that result with
   ``budget_exceeded=True``.

Decoding and encoding are CPU-bound; :class:`Transcoder` runs them on a
bounded thread pool so the event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import functools
import io
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from PIL import Image, ImageOps, UnidentifiedImageError

from siteassets.config import DEFAULT_QUALITY_LADDER, MIB, SiteAssetsConfig
from siteassets.errors import ImageDecodeError, ImageSizeError
from siteassets.models import ImageAsset, ImageFormat
from siteassets.observability import get_logger, resolve_metrics

log = get_logger("siteassets.transcode")

Image.LOAD_TRUNCATED_IMAGES = False

_PIL_FORMATS: dict[str, ImageFormat] = {
    "JPEG": ImageFormat.JPEG,
    "MPO": ImageFormat.JPEG,
    "PNG": ImageFormat.PNG,
    "GIF": ImageFormat.GIF,
    "WEBP": ImageFormat.WEBP,
}

_DEFAULT_MAX_PIXELS = 120_000_000


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def _open(data: bytes, max_pixels: int) -> Image.Image:
    """Open *data* lazily and enforce the pixel ceiling on the header."""
    try:
        img = Image.open(io.BytesIO(data))
    except Image.DecompressionBombError as exc:
        raise ImageSizeError(
            message="Image pixel count exceeds the decoder limit",
            context={"size_bytes": len(data), "max_pixels": max_pixels},
            cause=exc,
        ) from exc
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise ImageDecodeError(
            message="Image data could not be decoded",
            context={"size_bytes": len(data), "reason": str(exc)},
            cause=exc,
        ) from exc

    width, height = img.size
    if width * height > max_pixels:
        img.close()
        raise ImageSizeError(
            message=f"Image is {width}x{height}, above the {max_pixels} pixel limit",
            context={"width": width, "height": height, "max_pixels": max_pixels},
        )
    return img


def probe(data: bytes, *, max_pixels: int = _DEFAULT_MAX_PIXELS) -> tuple[ImageFormat, int, int]:
    """Return ``(format, width, height)`` from the image header.

    Only the header is parsed; pixel data is not decoded.

    Raises
    ------
    ImageDecodeError
        If *data* is not a decodable image of a supported format.
    ImageSizeError
        If the declared dimensions exceed *max_pixels*.
    """
    img = _open(data, max_pixels)
    try:
        fmt = _PIL_FORMATS.get(img.format or "")
        if fmt is None:
            raise ImageDecodeError(
                message=f"Unsupported image format: {img.format}",
                context={"size_bytes": len(data), "reason": "unsupported_format"},
            )
        width, height = img.size
        return fmt, width, height
    finally:
        img.close()


def target_size(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Scale ``(width, height)`` so the longest side is at most
    *max_dimension*, keeping the aspect ratio and never upscaling.

    >>> target_size(4000, 3000, 1920)
    (1920, 1440)
    >>> target_size(800, 600, 1920)
    (800, 600)
    """
    longest = max(width, height)
    if longest <= max_dimension:
        return width, height
    scale = max_dimension / longest
    if width >= height:
        return max_dimension, max(1, round(height * scale))
    return max(1, round(width * scale)), max_dimension


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (
        img.mode == "P" and "transparency" in img.info
    )


def _prepare_mode(img: Image.Image, fmt: ImageFormat) -> Image.Image:
    """Convert *img* to a mode the target encoder accepts."""
    if fmt is ImageFormat.JPEG:
        if img.mode in ("RGB", "L"):
            return img
        if _has_alpha(img):
            rgba = img.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.getchannel("A"))
            return background
        return img.convert("RGB")

    if fmt is ImageFormat.WEBP:
        if img.mode in ("RGB", "RGBA"):
            return img
        return img.convert("RGBA" if _has_alpha(img) else "RGB")

    if img.mode in ("1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"):
        return img
    return img.convert("RGBA" if _has_alpha(img) else "RGB")


def _encode(img: Image.Image, fmt: ImageFormat, quality: int | None) -> bytes:
    buf = io.BytesIO()
    if fmt is ImageFormat.JPEG:
        img.save(buf, format="JPEG", quality=quality, optimize=True)
    elif fmt is ImageFormat.WEBP:
        img.save(buf, format="WEBP", quality=quality, method=4)
    elif fmt is ImageFormat.PNG:
        img.save(buf, format="PNG", optimize=True)
    else:
        img.save(buf, format=fmt.value.upper())
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------

def negotiate(
    data: bytes,
    *,
    max_dimension: int = 1920,
    budget_bytes: int = 5 * MIB,
    quality_ladder: tuple[int, ...] = DEFAULT_QUALITY_LADDER,
    output_format: str = "webp",
    max_pixels: int = _DEFAULT_MAX_PIXELS,
    metrics: Any | None = None,
) -> ImageAsset:
    """Downscale and re-encode *data* until it fits *budget_bytes*.

    Parameters
    ----------
    data:
        Raw input bytes in any supported format.  Animated GIFs are
        flattened to their first frame.
    max_dimension:
        Longest side of the output, in pixels.
    budget_bytes:
        Target size of the encoded output.
    quality_ladder:
        Strictly descending qualities to try.  Ignored for PNG output,
        which is lossless and encoded once.
    output_format:
        ``"webp"``, ``"jpeg"`` or ``"png"``.
    max_pixels:
        Decoder ceiling guarding against decompression bombs.
    metrics:
        Optional :class:`~siteassets.observability.MetricsHook`.

    Returns
    -------
    ImageAsset
        The first ladder step that fits, or the floor step with
        ``budget_exceeded=True``.

    Raises
    ------
    ImageDecodeError
        If the input cannot be decoded.
    ImageSizeError
        If the input exceeds *max_pixels*.
    """
    hook = resolve_metrics(metrics)
    fmt = ImageFormat(output_format)
    start = time.monotonic()

    img = _open(data, max_pixels)
    try:
        try:
            img.seek(0)
            img.load()
            oriented = ImageOps.exif_transpose(img)
        except (OSError, ValueError, SyntaxError) as exc:
            raise ImageDecodeError(
                message="Image data is corrupt or truncated",
                context={"size_bytes": len(data), "reason": str(exc)},
                cause=exc,
            ) from exc

        width, height = target_size(oriented.width, oriented.height, max_dimension)
        if (width, height) != oriented.size:
            oriented = oriented.resize(
                (width, height), Image.Resampling.LANCZOS, reducing_gap=3.0
            )

        frame = _prepare_mode(oriented, fmt)
        if frame is img:
            frame = img.copy()
        # Drop EXIF, ICC, XMP and comments; palette transparency is pixel data.
        frame.info = {k: v for k, v in frame.info.items() if k == "transparency"}

        ladder: tuple[int | None, ...] = (
            (None,) if fmt is ImageFormat.PNG else tuple(quality_ladder)
        )
        encoded = b""
        quality: int | None = None
        for quality in ladder:
            encoded = _encode(frame, fmt, quality)
            hook.increment("siteassets.transcode_attempts_total", tags={"format": fmt.value})
            if len(encoded) <= budget_bytes:
                break
        budget_exceeded = len(encoded) > budget_bytes
    finally:
        img.close()

    elapsed_ms = (time.monotonic() - start) * 1000
    fields = {
        "op": "negotiate",
        "format": fmt.value,
        "width": width,
        "height": height,
        "quality": quality,
        "input_bytes": len(data),
        "output_bytes": len(encoded),
        "budget_bytes": budget_bytes,
        "duration_ms": round(elapsed_ms, 1),
    }
    if budget_exceeded:
        hook.increment("siteassets.budget_exceeded_total", tags={"format": fmt.value})
        log.warning(
            "Image exceeds byte budget at the lowest quality",
            extra={"extra_fields": fields},
        )
    else:
        log.debug("Image negotiated", extra={"extra_fields": fields})

    return ImageAsset(
        data=encoded,
        width=width,
        height=height,
        format=fmt,
        size_bytes=len(encoded),
        quality=quality,
        budget_exceeded=budget_exceeded,
    )


class Transcoder:
    """Runs :func:`negotiate` on a bounded worker pool.

    Parameters
    ----------
    config:
        Supplies the negotiation parameters and ``transcode_workers``.
    executor:
        An existing executor to use.  When omitted a private
        :class:`~concurrent.futures.ThreadPoolExecutor` is created and
        shut down by :meth:`close`.
    """

    def __init__(
        self,
        config: SiteAssetsConfig,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._config = config
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=config.transcode_workers,
            thread_name_prefix="siteassets-transcode",
        )

    async def negotiate(self, data: bytes) -> ImageAsset:
        """Negotiate *data* off the event loop."""
        cfg = self._config
        call = functools.partial(
            negotiate,
            data,
            max_dimension=cfg.max_dimension,
            budget_bytes=cfg.budget_bytes,
            quality_ladder=cfg.quality_ladder,
            output_format=cfg.output_format,
            max_pixels=cfg.max_image_pixels,
            metrics=cfg.metrics,
        )
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, call)

    async def probe(self, data: bytes) -> tuple[ImageFormat, int, int]:
        loop = asyncio.get_running_loop()
        call = functools.partial(probe, data, max_pixels=self._config.max_image_pixels)
        return await loop.run_in_executor(self._executor, call)

    def close(self) -> None:
        """Shut down the private worker pool, if any."""
        if self._owns_executor:
            self._executor.shutdown(wait=False)
