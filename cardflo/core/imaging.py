"""Image helpers for frame snapshots, stills and bounding-box crops.

Bounding boxes use the classifier's convention: ``[ymin, xmin, ymax, xmax]``
normalized to a 0-1000 coordinate space.
"""

import base64
import io
from typing import Optional, Sequence

from PIL import Image

BOX_SCALE = 1000


def scale_image(img: Image.Image, factor: float) -> Image.Image:
    """Resize an image by a linear factor.

    Only downscales; factors >= 1 return the original image.

    Args:
        img: PIL Image object
        factor: Linear scale factor (0.5 halves width and height)

    Returns:
        PIL Image object (downscaled if necessary, original otherwise)
    """
    if factor >= 1:
        return img
    if factor <= 0:
        raise ValueError(f"Scale factor must be positive, got {factor}")

    width, height = img.size
    new_width = max(1, int(width * factor))
    new_height = max(1, int(height * factor))
    return img.resize((new_width, new_height), Image.Resampling.LANCZOS)


def encode_jpeg(img: Image.Image, quality: int) -> bytes:
    """Encode an image as JPEG bytes at the given quality (1-95)."""
    if img.mode != "RGB":
        img = img.convert("RGB")
    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", quality=max(1, min(95, int(quality))))
    return buffer.getvalue()


def decode_image(image_bytes: bytes) -> Image.Image:
    return Image.open(io.BytesIO(image_bytes))


def format_image_data_url(image_bytes: bytes, mimetype: str = "image/jpeg") -> str:
    """Format image bytes as a base64 data URL."""
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{mimetype};base64,{encoded}"


def crop_box(
    image_bytes: bytes,
    box: Sequence[int],
    padding_ratio: float = 0.0,
    quality: int = 80,
) -> Optional[bytes]:
    """Crop a normalized bounding box out of an encoded image.

    Args:
        image_bytes: Encoded source image
        box: ``[ymin, xmin, ymax, xmax]`` in 0-1000 space
        padding_ratio: Extra margin around the box, relative to its size
        quality: JPEG quality of the returned crop

    Returns:
        JPEG bytes of the crop, or None if the box is empty or inverted
    """
    if len(box) != 4:
        return None

    img = decode_image(image_bytes)
    width, height = img.size
    ymin, xmin, ymax, xmax = box

    start_x = xmin / BOX_SCALE * width
    start_y = ymin / BOX_SCALE * height
    crop_width = (xmax - xmin) / BOX_SCALE * width
    crop_height = (ymax - ymin) / BOX_SCALE * height
    if crop_width <= 0 or crop_height <= 0:
        return None

    pad_x = crop_width * padding_ratio
    pad_y = crop_height * padding_ratio
    left = max(0.0, start_x - pad_x)
    top = max(0.0, start_y - pad_y)
    right = min(float(width), left + crop_width + pad_x * 2)
    bottom = min(float(height), top + crop_height + pad_y * 2)

    bounds = (int(left), int(top), int(right), int(bottom))
    if bounds[2] <= bounds[0] or bounds[3] <= bounds[1]:
        return None

    cropped = img.crop(bounds)
    return encode_jpeg(cropped, quality)


def crop_logo(image_bytes: bytes, logo_box: Sequence[int]) -> Optional[bytes]:
    return crop_box(image_bytes, logo_box, padding_ratio=0.1)


def ensure_jpeg(image_bytes: bytes, quality: int = 92) -> bytes:
    """Re-encode non-JPEG images (PNG, WebP, BMP) as JPEG; JPEG input is returned as is.

    Raises:
        OSError: If the bytes are not a readable image
    """
    img = decode_image(image_bytes)
    if img.format == "JPEG":
        return image_bytes
    return encode_jpeg(img, quality)
