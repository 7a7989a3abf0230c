"""
Image validator — cheap pre-flight check on a source image URL.

One HEAD request; the URL is rejected if it does not resolve, if the
declared content type is not an allowed raster format, or if the declared
size is over the ceiling. The check is advisory: nothing is persisted and it
is never retried.

detect_mime_type() is the second line of defence: once the bytes are
actually downloaded, Pillow tells us what they really are.
"""

import io
import logging
from typing import Iterable, Optional

import httpx
from PIL import Image, UnidentifiedImageError

from config.settings import settings
from delivery.types import ImageValidation

logger = logging.getLogger(__name__)

_PIL_FORMAT_TO_MIME = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}

_MIME_TO_EXTENSION = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def detect_mime_type(content: bytes) -> Optional[str]:
    """Sniff the real image format from its bytes. None if Pillow can't identify it."""
    try:
        with Image.open(io.BytesIO(content)) as img:
            return _PIL_FORMAT_TO_MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError):
        return None


def extension_for(mime_type: str) -> str:
    return _MIME_TO_EXTENSION.get(mime_type, "jpg")


def _format_mb(size: int) -> str:
    return f"{size / 1024 / 1024:.2f}MB"


class ImageValidator:

    def __init__(
        self,
        http: httpx.AsyncClient,
        allowed_types: Optional[Iterable[str]] = None,
        max_bytes: Optional[int] = None,
    ):
        self._http = http
        self.allowed_types = frozenset(allowed_types or settings.ALLOWED_IMAGE_TYPES)
        self.max_bytes = max_bytes if max_bytes is not None else settings.MAX_IMAGE_BYTES

    async def validate(self, url: str) -> ImageValidation:
        try:
            response = await self._http.head(url, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.info(f"Validation of {url} failed: {e}")
            return ImageValidation(valid=False, reason=f"Image validation failed: {e}")

        if response.is_error:
            return ImageValidation(
                valid=False,
                reason=f"Failed to fetch image: {response.status_code} {response.reason_phrase}",
            )

        mime_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        size = self._parse_size(response.headers.get("content-length"))

        if not mime_type:
            return ImageValidation(valid=False, size=size, reason="Image has no content type")
        if mime_type not in self.allowed_types:
            return ImageValidation(
                valid=False,
                mime_type=mime_type,
                size=size,
                reason=f"Invalid image format. Allowed formats: JPG, PNG, WebP. Got: {mime_type}",
            )
        if size is not None and size > self.max_bytes:
            return ImageValidation(
                valid=False,
                mime_type=mime_type,
                size=size,
                reason=(
                    f"Image too large. Maximum size: {_format_mb(self.max_bytes)}. "
                    f"Got: {_format_mb(size)}"
                ),
            )

        return ImageValidation(valid=True, mime_type=mime_type, size=size)

    def check_content(self, content: bytes) -> ImageValidation:
        """Validate downloaded bytes: real format via Pillow, real size via len()."""
        mime_type = detect_mime_type(content)
        size = len(content)
        if mime_type is None:
            return ImageValidation(
                valid=False, size=size, reason="Downloaded file is not a recognizable image"
            )
        if mime_type not in self.allowed_types:
            return ImageValidation(
                valid=False,
                mime_type=mime_type,
                size=size,
                reason=f"Invalid image format. Allowed formats: JPG, PNG, WebP. Got: {mime_type}",
            )
        if size > self.max_bytes:
            return ImageValidation(
                valid=False,
                mime_type=mime_type,
                size=size,
                reason=(
                    f"Image too large. Maximum size: {_format_mb(self.max_bytes)}. "
                    f"Got: {_format_mb(size)}"
                ),
            )
        return ImageValidation(valid=True, mime_type=mime_type, size=size)

    @staticmethod
    def _parse_size(raw: Optional[str]) -> Optional[int]:
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None
