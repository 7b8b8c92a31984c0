"""Photo compression for image uploads.

Images are fitted inside a bounding box (never enlarged) and re-encoded as
JPEG before they are stored.
"""

import io
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError


class ImageCompressionError(Exception):
    """Raised when an upload cannot be decoded or re-encoded as an image."""

    pass


@dataclass(frozen=True)
class CompressedImage:
    """A re-encoded JPEG and its pixel size."""
    data: bytes
    width: int
    height: int
    mime_type: str = "image/jpeg"
    extension: str = "jpg"


def fit_within(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """Scale ``width`` x ``height`` down to fit the box, keeping the ratio."""
    scale = min(max_width / width, max_height / height, 1.0)
    return max(1, round(width * scale)), max(1, round(height * scale))


def compress_image(
    data: bytes,
    max_width: int = 800,
    max_height: int = 800,
    quality: int = 80,
) -> CompressedImage:
    """Downscale and re-encode an image as JPEG.

    EXIF orientation is applied first so the stored photo displays upright
    without relying on the viewer.

    Args:
        data: Encoded image bytes in any format Pillow reads
        max_width: Maximum output width
        max_height: Maximum output height
        quality: JPEG quality, 1-95

    Returns:
        CompressedImage with the JPEG bytes

    Raises:
        ImageCompressionError: If the bytes are not a readable image
    """
    output = io.BytesIO()
    try:
        image = ImageOps.exif_transpose(Image.open(io.BytesIO(data)))

        # JPEG has no alpha or palette
        if image.mode != "RGB":
            image = image.convert("RGB")

        size = fit_within(image.width, image.height, max_width, max_height)
        if size != image.size:
            image = image.resize(size, Image.Resampling.LANCZOS)

        image.save(output, format="JPEG", quality=quality, optimize=True)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageCompressionError(f"Image compression failed: {e}") from e

    return CompressedImage(data=output.getvalue(), width=image.width, height=image.height)
