import base64
import binascii
import logging
from io import BytesIO
from typing import Optional, Tuple
from urllib.parse import unquote_to_bytes

import httpx
from PIL import Image, UnidentifiedImageError

from flyerdeck.agents.config import SUPPORTED_IMAGE_MIME_TYPES, PROVIDER_HTTP_TIMEOUT
from flyerdeck.agents.generation.exceptions import (
    OVERSIZED_IMAGE_REASON,
    CropError,
    ImageFetchError,
    ImageFormatError,
)
from flyerdeck.models.assets import ImagePayload
from flyerdeck.utils.geometry import NormalizedRegion, crop_extent, region_to_pixels

logger = logging.getLogger(__name__)


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def parse_data_url(url: str) -> Tuple[bytes, Optional[str]]:
    """Decode a ``data:`` URL into bytes and its declared MIME type."""
    try:
        header, payload = url[len("data:"):].split(",", 1)
    except ValueError as e:
        raise ImageFetchError("Malformed data URL", cause=e)

    params = header.split(";")
    mime_type = params[0] or None
    try:
        if "base64" in params[1:]:
            data = base64.b64decode(payload, validate=False)
        else:
            data = unquote_to_bytes(payload)
    except (binascii.Error, ValueError) as e:
        raise ImageFetchError("Could not decode data URL", cause=e)
    return data, mime_type


def sniff_mime_type(data: bytes) -> Optional[str]:
    """MIME type from the image header, or None if Pillow can't read it."""
    try:
        with Image.open(BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError):
        return None
    return Image.MIME.get(fmt) if fmt else None


def is_animated(data: bytes) -> bool:
    try:
        with Image.open(BytesIO(data)) as img:
            return bool(getattr(img, "is_animated", False))
    except (UnidentifiedImageError, OSError):
        return False


def ensure_supported(data: bytes, mime_type: Optional[str]) -> str:
    """Return the effective MIME type.

    Raises ImageFormatError for vector, animated, unknown or oversized input.
    """
    declared = (mime_type or "").split(";")[0].strip().lower()
    if declared and not declared.startswith("image/"):
        declared = ""
    try:
        effective = declared or sniff_mime_type(data) or "application/octet-stream"
        if effective == "image/jpg":
            effective = "image/jpeg"
        if effective not in SUPPORTED_IMAGE_MIME_TYPES:
            raise ImageFormatError(effective)
        animated = is_animated(data)
    except Image.DecompressionBombError as e:
        raise ImageFormatError(declared or "image", reason=OVERSIZED_IMAGE_REASON, cause=e)
    if animated:
        raise ImageFormatError(effective, reason="animated")
    return effective


async def fetch_image(source: str, client: Optional[httpx.AsyncClient] = None) -> Tuple[bytes, str]:
    """Load image bytes from a data URL or an http(s) URL.

    Returns ``(data, mime_type)``; unsupported formats raise ImageFormatError.
    """
    if source.startswith("data:"):
        data, mime_type = parse_data_url(source)
        return data, ensure_supported(data, mime_type)

    if not source.startswith(("http://", "https://")):
        raise ImageFetchError(f"Unsupported image reference: {source[:40]}")

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=PROVIDER_HTTP_TIMEOUT, follow_redirects=True) as own_client:
                response = await own_client.get(source)
        else:
            response = await client.get(source)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise ImageFetchError(f"Failed to download image: {source[:80]}", cause=e)

    data = response.content
    return data, ensure_supported(data, response.headers.get("content-type"))


def image_size(data: bytes) -> Tuple[int, int]:
    try:
        with Image.open(BytesIO(data)) as img:
            width, height = img.size
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise CropError("Failed to read image dimensions", cause=e)
    if not width or not height:
        raise CropError("Failed to read image dimensions")
    return width, height


def crop_region(data: bytes, region: NormalizedRegion, prompt: str = "") -> ImagePayload:
    """Crop ``region`` out of the image and return it as PNG."""
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            width, height = img.size
            if not width or not height:
                raise CropError("Failed to read image dimensions")

            left, top, crop_width, crop_height = crop_extent(region_to_pixels(region, width, height))
            if left + crop_width > width or top + crop_height > height:
                raise CropError(
                    "Crop extent falls outside the image",
                    context={"left": left, "top": top, "width": crop_width, "height": crop_height},
                )

            cropped = img.crop((left, top, left + crop_width, top + crop_height))
            if cropped.mode not in ("RGB", "RGBA", "L", "LA"):
                cropped = cropped.convert("RGBA")
            buffer = BytesIO()
            cropped.save(buffer, format="PNG")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise CropError("Failed to decode image for cropping", cause=e)

    logger.debug(f"[CROP] {left},{top} {crop_width}x{crop_height} from {width}x{height}")
    return ImagePayload(data=buffer.getvalue(), mime_type="image/png", prompt=prompt)
