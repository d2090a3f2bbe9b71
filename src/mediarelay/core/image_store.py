"""Disk-backed storage for uploaded and generated images.

Images arrive as data URIs (``data:image/png;base64,...``).  They are decoded
and written to the public images directory, and callers get back a relative
URL under the static prefix that FastAPI serves with ``StaticFiles``.

The store performs no content validation beyond base64 decodability;
:func:`optimize_image` is the only place Pillow actually opens the bytes.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from mediarelay.core.errors import InvalidImageFormat

logger = logging.getLogger(__name__)

INLINE_IMAGE_PATTERN = re.compile(r"^data:image/[A-Za-z0-9.+-]+;base64,", re.IGNORECASE)

_DATA_URI_PATTERN = re.compile(
    r"^data:(?P<mime>image/[A-Za-z0-9.+-]+);base64,(?P<payload>.+)$",
    re.IGNORECASE | re.DOTALL,
)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
}

# Upper bound used when optimising an image before it leaves the process.
MAX_OPTIMIZED_SIZE = (1920, 1080)
OPTIMIZED_JPEG_QUALITY = 80


@dataclass(frozen=True)
class SavedImage:
    """Result of :meth:`ImageStore.save`."""

    url: str
    mime_type: str
    filename: str
    byte_size: int


def is_inline_image(value: object) -> bool:
    """Return True when *value* is a string holding an inline base64 image."""
    return isinstance(value, str) and bool(INLINE_IMAGE_PATTERN.match(value.strip()))


def parse_data_uri(value: object) -> tuple[str, bytes]:
    """Split a data URI into its MIME type and decoded bytes.

    Raises:
        InvalidImageFormat: If *value* is not an image data URI or the
            payload is not valid base64.
    """
    if not isinstance(value, str):
        raise InvalidImageFormat()
    match = _DATA_URI_PATTERN.match(value.strip())
    if not match:
        raise InvalidImageFormat()

    payload = re.sub(r"\s+", "", match.group("payload"))
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageFormat(f"Image payload is not valid base64: {exc}") from exc
    if not data:
        raise InvalidImageFormat("Image payload is empty")
    return match.group("mime").lower(), data


def to_data_uri(data: bytes, mime_type: str) -> str:
    """Encode raw bytes as a data URI."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def optimize_image(encoded_image: str) -> str:
    """Shrink an image to fit 1920x1080 and re-encode it as JPEG.

    Smaller payloads keep image-host uploads fast.  Images already inside the
    bounds are not enlarged.

    Returns:
        A ``data:image/jpeg;base64,...`` URI.

    Raises:
        InvalidImageFormat: If the payload is not a decodable image.
    """
    _, data = parse_data_uri(encoded_image)
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.thumbnail(MAX_OPTIMIZED_SIZE)
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            buffer = io.BytesIO()
            image.save(buffer, format="JPEG", quality=OPTIMIZED_JPEG_QUALITY)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise InvalidImageFormat("Image optimization failed") from exc
    return to_data_uri(buffer.getvalue(), "image/jpeg")


def _slugify(value: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9_-]+", "-", value).strip("-")
    return slug[:64] or "image"


class ImageStore:
    """Writes decoded images into a public directory.

    Args:
        directory: Directory the files are written to (created on demand).
        url_prefix: URL prefix the directory is served under.
    """

    def __init__(self, directory: Path, url_prefix: str = "/images"):
        self.directory = Path(directory)
        self.url_prefix = "/" + url_prefix.strip("/")

    def save(self, encoded_image: str, id_hint: str) -> SavedImage:
        """Decode *encoded_image* and write it under a unique file name.

        The file name is ``<id_hint>-<epoch-ms>.<ext>``.  Repeated calls with
        the same hint produce distinct files.

        Raises:
            InvalidImageFormat: If *encoded_image* is not an image data URI.
        """
        mime_type, data = parse_data_uri(encoded_image)
        extension = _EXTENSIONS.get(mime_type, mime_type.split("/", 1)[1].split("+")[0])

        self.directory.mkdir(parents=True, exist_ok=True)
        stem = _slugify(id_hint)
        stamp = int(time.time() * 1000)
        filepath = self.directory / f"{stem}-{stamp}.{extension}"
        while filepath.exists():
            stamp += 1
            filepath = self.directory / f"{stem}-{stamp}.{extension}"

        filepath.write_bytes(data)
        logger.info(f"Saved image {filepath.name} ({len(data)} bytes, {mime_type})")

        return SavedImage(
            url=f"{self.url_prefix}/{filepath.name}",
            mime_type=mime_type,
            filename=filepath.name,
            byte_size=len(data),
        )
