"""
Image payload validation and encoding for vision analysis.

Scans arrive either as multipart uploads (raw bytes) or inside the JSON request
as base64 / data URL / http(s) URL strings. Everything ends up as a URL the
vision model accepts.
"""
import base64
import binascii
import os
from typing import Optional, Union

MAX_FILE_SIZE = int(os.getenv("MAX_IMAGE_SIZE", 10 * 1024 * 1024))  # 10MB
ALLOWED_MIME_TYPES = {"image/jpeg", "image/png", "image/heic", "image/webp", "image/gif"}


class ImageValidationError(Exception):
    """Raised when an image payload is unusable."""
    pass


def sniff_mime_type(content: bytes) -> Optional[str]:
    """
    Determine MIME type from magic bytes.

    Returns None when the bytes do not look like a supported image.
    """
    if content.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if content.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    if content[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if content[4:8] == b"ftyp" and content[8:12] in (b"heic", b"heix", b"mif1", b"msf1"):
        return "image/heic"
    return None


def validate_image(content: bytes) -> str:
    """
    Validate raw image bytes.

    Returns:
        Detected MIME type

    Raises:
        ImageValidationError: If the payload is empty, too large, or not an image
    """
    if not content:
        raise ImageValidationError("Image is empty")
    if len(content) > MAX_FILE_SIZE:
        raise ImageValidationError(
            f"File too large. Maximum size: {MAX_FILE_SIZE / 1024 / 1024}MB"
        )
    mime_type = sniff_mime_type(content)
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ImageValidationError("File does not appear to be a valid image")
    return mime_type


def to_image_url(image: Union[str, bytes]) -> str:
    """
    Turn an image payload into something the vision API accepts.

    http(s) URLs pass through untouched; data URLs and bare base64 are decoded
    and validated, then re-encoded as a data URL with the sniffed MIME type.
    """
    if isinstance(image, bytes):
        content = image
    else:
        payload = image.strip()
        if payload.startswith(("http://", "https://")):
            return payload
        if payload.startswith("data:"):
            _, _, payload = payload.partition(",")
        try:
            content = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            raise ImageValidationError("Image is not valid base64")

    mime_type = validate_image(content)
    encoded = base64.b64encode(content).decode("utf-8")
    return f"data:{mime_type};base64,{encoded}"
