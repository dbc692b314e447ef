"""
Job photo handling: validate an uploaded base64 image and shrink it before
it is stored inside the job record.
"""
import base64
import binascii
import io
from typing import Optional

import structlog
from PIL import Image, UnidentifiedImageError

from ..config import settings

logger = structlog.get_logger(__name__)

ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp")


class ImageValidationError(ValueError):
    pass


def decode_base64_image(data: str) -> bytes:
    """Accept raw base64 or a ``data:image/...;base64,`` URL."""
    if not data:
        raise ImageValidationError("Empty image payload")
    if data.startswith("data:"):
        header, _, data = data.partition(",")
        content_type = header[5:].split(";")[0].lower()
        if content_type and content_type not in ALLOWED_CONTENT_TYPES:
            raise ImageValidationError(f"Unsupported image type: {content_type}")
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise ImageValidationError("Image payload is not valid base64")


def optimize_image_bytes(image_bytes: bytes, max_dim: Optional[int] = None, quality: Optional[int] = None) -> bytes:
    """
    Downscale to ``max_dim`` on the longest side and re-encode as JPEG.

    Args:
        image_bytes: Original image bytes
        max_dim: Longest side in pixels (defaults to IMAGE_MAX_DIM)
        quality: JPEG quality (defaults to IMAGE_JPEG_QUALITY)

    Returns:
        JPEG bytes, or the original bytes if re-encoding would not shrink them
    """
    max_dim = max_dim or settings.image_max_dim
    quality = quality or settings.image_jpeg_quality
    original_size = len(image_bytes)

    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError):
        raise ImageValidationError("Uploaded data is not a readable image")

    # Flatten transparency onto white
    if img.mode in ("RGBA", "LA", "P"):
        rgb_img = Image.new("RGB", img.size, (255, 255, 255))
        if img.mode == "P":
            img = img.convert("RGBA")
        rgb_img.paste(img, mask=img.split()[-1])
        img = rgb_img
    elif img.mode != "RGB":
        img = img.convert("RGB")

    width, height = img.size
    if max(width, height) > max_dim:
        if width > height:
            new_width, new_height = max_dim, int((height * max_dim) / width)
        else:
            new_width, new_height = int((width * max_dim) / height), max_dim
        img = img.resize((max(new_width, 1), max(new_height, 1)), Image.Resampling.LANCZOS)

    output = io.BytesIO()
    img.save(output, format="JPEG", quality=quality, optimize=True, progressive=True)
    optimized = output.getvalue()

    if len(optimized) >= original_size and max(width, height) <= max_dim:
        logger.info("image_optimization_skipped", original_size=original_size, optimized_size=len(optimized))
        return image_bytes

    logger.info(
        "image_optimized",
        original_size=original_size,
        optimized_size=len(optimized),
        original_dimensions=f"{width}x{height}",
        final_dimensions=f"{img.size[0]}x{img.size[1]}",
    )
    return optimized


def prepare_job_image(data: str) -> str:
    """Validate, shrink and re-encode an upload; returns bare base64 for storage."""
    raw = decode_base64_image(data)
    if len(raw) > settings.image_max_bytes:
        raise ImageValidationError("File size too large. Maximum size is 5MB.")
    return base64.b64encode(optimize_image_bytes(raw)).decode("ascii")
