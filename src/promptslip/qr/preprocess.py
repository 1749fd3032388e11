from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path
from typing import Iterator, Sequence

from PIL import Image, ImageEnhance, ImageOps, UnidentifiedImageError

from promptslip.verify.errors import ImageLoadError

log = logging.getLogger(__name__)

# (width, height); None keeps the source resolution. The square variant helps
# with QR codes that decode poorly after an aspect-changing resize.
DEFAULT_SIZES: tuple[tuple[int, int] | None, ...] = (None, (800, 600), (1200, 900), (600, 600))
# Two successive boosts: low-contrast slip photos often fail after a single pass.
DEFAULT_CONTRAST_FACTORS: tuple[float, ...] = (1.5, 1.7)


def load_image_bytes(source: bytes | str | Path) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    try:
        return Path(source).read_bytes()
    except OSError as exc:
        raise ImageLoadError(f"Cannot read slip image {source}: {exc}") from exc


def open_image(image_bytes: bytes) -> Image.Image:
    """Decodes PNG/JPEG/GIF bytes; anything Pillow cannot read raises ImageLoadError."""
    if not image_bytes:
        raise ImageLoadError("Slip image is empty")
    try:
        img = Image.open(BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageLoadError(f"Cannot decode slip image: {exc}") from exc
    return img


def enhance(image: Image.Image, contrast_factors: Sequence[float] = DEFAULT_CONTRAST_FACTORS) -> Image.Image:
    """Greyscale, histogram normalization, then the contrast boosts in order."""
    g = ImageOps.grayscale(image)
    g = ImageOps.autocontrast(g)
    for factor in contrast_factors:
        g = ImageEnhance.Contrast(g).enhance(float(factor))
    return g


def _resized(base: Image.Image, sizes: Sequence[tuple[int, int] | None]) -> Iterator[Image.Image]:
    for size in sizes:
        if size is None or tuple(size) == base.size:
            yield base
            continue
        try:
            variant = base.resize((int(size[0]), int(size[1])), Image.Resampling.BICUBIC)
        except (MemoryError, ValueError, OSError) as exc:
            log.warning("Resize to %sx%s failed: %s", size[0], size[1], exc)
            continue
        yield variant


def prepare(
    image_bytes: bytes,
    *,
    sizes: Sequence[tuple[int, int] | None] = DEFAULT_SIZES,
    contrast_factors: Sequence[float] = DEFAULT_CONTRAST_FACTORS,
) -> Iterator[Image.Image]:
    """
    Returns greyscale candidates for QR decoding, one per entry of ``sizes``.

    The image is decoded and enhanced immediately (ImageLoadError surfaces
    here); resizing is lazy and only happens for variants a caller asks for.
    """
    base = enhance(open_image(image_bytes), contrast_factors)
    return _resized(base, list(sizes))
