"""Validation helpers for images attached to chat messages.

Uploads are checked before any remote call: size first, then content type.
"""

import base64
import binascii

from barta.chat.exceptions import FileTooLarge, UnsupportedFile
from barta.models.messages import ImageAttachment

ALLOWED_IMAGE_TYPES = {
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/heic",
    "image/heif",
}

DEFAULT_MAX_UPLOAD_BYTES = 4 * 1024 * 1024


def normalize_content_type(content_type: str | None) -> str:
    return (content_type or "").lower().split(";", 1)[0].strip()


def validate_image(
    size: int, content_type: str | None, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
) -> str:
    """Return the normalized content type of a valid upload.

    Raises:
        FileTooLarge: If ``size`` exceeds ``max_bytes``.
        UnsupportedFile: If the content type is not an accepted image type.
    """
    if size > max_bytes:
        raise FileTooLarge(f"Image is {size} bytes, limit is {max_bytes}")
    mime_type = normalize_content_type(content_type)
    if mime_type not in ALLOWED_IMAGE_TYPES:
        raise UnsupportedFile(f"Unsupported image content type: {content_type}")
    return mime_type


def to_attachment(
    raw: bytes, content_type: str | None, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
) -> ImageAttachment:
    """Validate raw image bytes and encode them for an inline request part."""
    mime_type = validate_image(len(raw), content_type, max_bytes)
    return ImageAttachment(mime_type=mime_type, data=base64.b64encode(raw).decode("ascii"))


def attachment_from_base64(
    data: str, content_type: str | None, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
) -> ImageAttachment:
    """Validate an already base64-encoded upload (as sent over the WebSocket)."""
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise UnsupportedFile("Image data is not valid base64") from exc
    return to_attachment(raw, content_type, max_bytes)
