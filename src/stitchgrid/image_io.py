"""Image decoding and conversion between Pillow images and pixel buffers."""

from __future__ import annotations

from pathlib import Path

from PIL import Image, UnidentifiedImageError

from stitchgrid.errors import ResourceUnavailableError
from stitchgrid.logging import get_logger
from stitchgrid.models import PixelBuffer

logger = get_logger("image_io")

SUPPORTED_FORMATS = frozenset({"PNG", "JPEG", "GIF", "WEBP"})
MAX_FILE_SIZE = 10 * 1024 * 1024


def load_image(image_path: str | Path) -> Image.Image:
    """Open and decode an input image as RGBA.

    Only PNG, JPEG, GIF and WebP files up to 10 MB are accepted.  Animated
    images contribute their first frame.

    Raises:
        FileNotFoundError: If *image_path* does not exist.
        ResourceUnavailableError: If the file is too large, cannot be decoded,
            or is in an unsupported format.
    """
    path = Path(image_path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")

    size = path.stat().st_size
    if size > MAX_FILE_SIZE:
        raise ResourceUnavailableError(
            f"Image too large: {size} bytes (maximum {MAX_FILE_SIZE})"
        )

    try:
        img = Image.open(path)
        img.load()
    except (OSError, UnidentifiedImageError) as exc:
        raise ResourceUnavailableError(f"Cannot open image: {path}") from exc

    if img.format not in SUPPORTED_FORMATS:
        raise ResourceUnavailableError(
            f"Unsupported image format {img.format!r} for {path}; "
            f"expected one of {', '.join(sorted(SUPPORTED_FORMATS))}"
        )

    logger.debug("Decoded %s image %dx%d from %s", img.format, img.width, img.height, path)
    if img.mode != "RGBA":
        img = img.convert("RGBA")
    return img


def buffer_from_image(image: Image.Image) -> PixelBuffer:
    """Copy a Pillow image into an RGBA ``PixelBuffer``."""
    if image.mode != "RGBA":
        image = image.convert("RGBA")
    return PixelBuffer(width=image.width, height=image.height, data=image.tobytes())


def image_from_buffer(buffer: PixelBuffer) -> Image.Image:
    """Wrap a ``PixelBuffer`` as a Pillow RGBA image."""
    return Image.frombytes("RGBA", (buffer.width, buffer.height), buffer.data)


def load_buffer(image_path: str | Path) -> PixelBuffer:
    """Decode *image_path* straight into a ``PixelBuffer``."""
    return buffer_from_image(load_image(image_path))
