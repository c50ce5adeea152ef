"""
Image preprocessing for uploaded creatives.

Uploads are normalized to JPEG, fit inside 1024x1024 without enlargement,
and base64-encoded for the vision model and the annotation service.
"""

import base64
import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

from .constants import IMAGE_JPEG_QUALITY, IMAGE_MAX_DIMENSION

logger = logging.getLogger(__name__)


class ImagePreprocessingError(ValueError):
    """Uploaded bytes could not be decoded as an image."""
    pass


def preprocess_image(
    image_bytes: bytes,
    max_dimension: int = IMAGE_MAX_DIMENSION,
    quality: int = IMAGE_JPEG_QUALITY,
) -> str:
    """Resize to fit ``max_dimension`` (aspect preserved, never enlarged) and return base64 JPEG."""
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode != "RGB":
                img = img.convert("RGB")
            # thumbnail() only ever shrinks
            img.thumbnail((max_dimension, max_dimension))

            buffer = io.BytesIO()
            img.save(buffer, format="JPEG", quality=quality)
    except (UnidentifiedImageError, OSError) as e:
        logger.error(f"Failed to preprocess image: {e}")
        raise ImagePreprocessingError(f"Unsupported or corrupt image: {e}") from e

    logger.debug(f"Preprocessed image to {img.width}x{img.height}, {buffer.tell()} bytes")
    return base64.b64encode(buffer.getvalue()).decode("ascii")
