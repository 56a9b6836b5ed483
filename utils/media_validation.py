"""Validation helpers for menu photo attachments."""

import base64
import binascii
from pathlib import Path
from typing import Optional

import aiofiles

ALLOWED_IMAGE_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/heic",
    "image/heif",
    "image/gif",
    "image/bmp",
}

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".heic", ".heif", ".gif", ".bmp")

MAX_ATTACHMENT_BYTES = 15 * 1024 * 1024


def validate_image_type(filename: Optional[str], content_type: Optional[str]) -> str:
    """Return the normalized image MIME type, or raise ValueError.

    When the content type is missing the filename extension decides.
    """
    if content_type:
        normalized = content_type.lower().split(";", 1)[0].strip()
        if normalized not in ALLOWED_IMAGE_TYPES:
            raise ValueError(f"Unsupported image content type: {content_type}")
        return "image/jpeg" if normalized == "image/jpg" else normalized
    name = (filename or "").lower()
    if not name.endswith(IMAGE_EXTENSIONS):
        raise ValueError("Unsupported or missing image content type.")
    suffix = Path(name).suffix.lstrip(".")
    return "image/jpeg" if suffix in ("jpg", "jpeg") else f"image/{suffix}"


def decode_base64_image(data: str) -> bytes:
    """Decode a base64 payload (optionally a data URL) into image bytes."""
    text = (data or "").strip()
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    try:
        raw = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Attachment data is not valid base64.") from exc
    return ensure_image_size(raw)


def ensure_image_size(raw: bytes) -> bytes:
    if not raw:
        raise ValueError("Attachment is empty.")
    if len(raw) > MAX_ATTACHMENT_BYTES:
        raise ValueError("Attachment is too large.")
    return raw


async def read_image_file(path: str | Path) -> bytes:
    """Read an attachment from disk without blocking the event loop."""
    async with aiofiles.open(path, "rb") as fh:
        raw = await fh.read()
    return ensure_image_size(raw)
