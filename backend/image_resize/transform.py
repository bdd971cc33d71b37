"""
Image Transform Engine

Pure image operations used by the resize endpoint:
- Decoding fetched bytes (with EXIF orientation applied)
- Downscaling to a width, a height, or a cover-fit box with center crop
- JPEG encoding with quality tiered by output resolution

Nothing here touches the network or the cache.
"""

import logging
from io import BytesIO
from typing import Optional
from dataclasses import dataclass

from PIL import Image, ImageOps

from .errors import EncodeError, InvalidImageError, InvalidParameterError

logger = logging.getLogger(__name__)

# Outputs up to this size (both sides) are encoded at full quality
QUALITY_THRESHOLD_PX = 1000
FULL_QUALITY = 96
REDUCED_QUALITY = 90

RESAMPLE = Image.Resampling.BILINEAR

OUTPUT_CONTENT_TYPE = "image/jpeg"


@dataclass
class TransformResult:
    """Encoded output of a resize request."""
    data: bytes
    width: int
    height: int


def decode_image(data: bytes) -> Image.Image:
    """
    Decode raw bytes into a fully loaded, correctly oriented image.

    Raises:
        InvalidImageError: bytes are not a decodable image.
    """
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise InvalidImageError(f"Invalid image: {e}") from e

    # Camera images often store rotation in EXIF instead of the pixels
    img = ImageOps.exif_transpose(img)
    return img


def resize(
    img: Image.Image,
    target_width: Optional[int] = None,
    target_height: Optional[int] = None,
) -> Image.Image:
    """
    Downscale an image to the requested box. Never upscales.

    - width only / height only: uniform scale to that side
    - both: cover-fit the box, then crop the centered window

    Returns the input image itself when no scaling is needed.
    """
    if target_width is None and target_height is None:
        return img

    if (target_width is not None and target_width <= 0) or (
        target_height is not None and target_height <= 0
    ):
        raise InvalidParameterError("Requested dimensions must be positive")

    original_width, original_height = img.size
    if original_width <= 0 or original_height <= 0:
        raise InvalidParameterError("Source image has no pixels")

    if target_width is not None and target_height is not None:
        return _cover_crop(img, target_width, target_height)

    if target_width is not None:
        if target_width >= original_width:
            return img
        scale = target_width / original_width
        new_height = max(1, round(original_height * scale))
        return img.resize((target_width, new_height), RESAMPLE)

    if target_height >= original_height:
        return img
    scale = target_height / original_height
    new_width = max(1, round(original_width * scale))
    return img.resize((new_width, target_height), RESAMPLE)


def _cover_crop(img: Image.Image, target_width: int, target_height: int) -> Image.Image:
    original_width, original_height = img.size
    scale = max(target_width / original_width, target_height / original_height)
    if scale >= 1:
        return img

    resized_width = max(1, round(original_width * scale))
    resized_height = max(1, round(original_height * scale))
    scaled = img.resize((resized_width, resized_height), RESAMPLE)

    crop_width = min(target_width, resized_width)
    crop_height = min(target_height, resized_height)
    x = max(0, (resized_width - target_width) // 2)
    y = max(0, (resized_height - target_height) // 2)
    logger.debug(
        f"[Transform] Cover {original_width}x{original_height} -> "
        f"{resized_width}x{resized_height}, crop {crop_width}x{crop_height} at ({x},{y})"
    )
    return scaled.crop((x, y, x + crop_width, y + crop_height))


def jpeg_quality_for(width: int, height: int) -> int:
    """Full quality for outputs within the threshold, slightly reduced above."""
    if width <= QUALITY_THRESHOLD_PX and height <= QUALITY_THRESHOLD_PX:
        return FULL_QUALITY
    return REDUCED_QUALITY


def _to_rgb(img: Image.Image) -> Image.Image:
    """Flatten transparency onto white; JPEG has no alpha channel."""
    if img.mode == "RGB":
        return img
    if img.mode in ("RGBA", "LA", "P"):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[3])
        return background
    return img.convert("RGB")


def encode_jpeg(img: Image.Image) -> bytes:
    """
    Encode an image as JPEG.

    Tries the tuned encoder first and falls back to Pillow's defaults.

    Raises:
        EncodeError: both encoders failed.
    """
    img = _to_rgb(img)
    quality = jpeg_quality_for(*img.size)

    try:
        output = BytesIO()
        img.save(output, format="JPEG", quality=quality, optimize=True)
        return output.getvalue()
    except (OSError, ValueError, KeyError) as e:
        logger.warning(f"[Transform] Tuned JPEG encode failed, using defaults: {e}")

    try:
        output = BytesIO()
        img.save(output, format="JPEG")
        return output.getvalue()
    except (OSError, ValueError, KeyError) as e:
        logger.error(f"[Transform] JPEG encode failed: {e}")
        raise EncodeError(f"Failed to encode image: {e}") from e


def transform_bytes(
    data: bytes,
    target_width: Optional[int] = None,
    target_height: Optional[int] = None,
) -> TransformResult:
    """Decode, resize and re-encode an image in one step."""
    img = decode_image(data)
    output = resize(img, target_width, target_height)
    encoded = encode_jpeg(output)
    width, height = output.size
    return TransformResult(data=encoded, width=width, height=height)


def detect_content_type(data: bytes) -> Optional[str]:
    """MIME type from the image header bytes, or None if not recognised."""
    try:
        with Image.open(BytesIO(data)) as img:
            return Image.MIME.get(img.format or "")
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError):
        return None
