"""
Image decoding for chat turns.
"""

import base64
import binascii
import io
import re

from PIL import Image, UnidentifiedImageError

from .errors import ImageDecodeError


DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w=-]+)*;base64,", re.I)


def strip_data_url(image_data: str) -> str:
    """Return the base64 payload of a ``data:image/...;base64,`` URL (or the input)."""
    match = DATA_URL_PATTERN.match(image_data)
    if match:
        mime = match.group("mime")
        if mime and not mime.lower().startswith("image/"):
            raise ImageDecodeError(f"Only image files are supported, got {mime}")
        return image_data[match.end():]
    return image_data


def decode_image(image_data: str) -> Image.Image:
    """Decode a base64 transport string into an RGB PIL image."""
    if not image_data or not image_data.strip():
        raise ImageDecodeError("Image data is empty")

    payload = "".join(strip_data_url(image_data.strip()).split())
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageDecodeError(f"Failed to decode image: {e}") from e

    try:
        image = Image.open(io.BytesIO(raw))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ImageDecodeError(f"Failed to load image: {e}") from e

    return image.convert("RGB")
