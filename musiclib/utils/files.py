"""Content-addressed key helpers shared by song and image uploads."""

import hashlib
import mimetypes
from pathlib import PurePosixPath

_IMAGE_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "png", "image/png"),
    (b"GIF87a", "gif", "image/gif"),
    (b"GIF89a", "gif", "image/gif"),
    (b"\xff\xd8\xff", "jpg", "image/jpeg"),
)


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def file_extension(filename: str | None, mime_type: str | None = None, default: str = "bin") -> str:
    """Extension without the dot: from the filename, else the MIME type."""
    suffix = PurePosixPath(filename or "").suffix.lstrip(".").lower()
    if suffix and suffix.isalnum():
        return suffix
    if mime_type:
        guessed = mimetypes.guess_extension(mime_type.split(";")[0].strip())
        if guessed:
            return "jpg" if guessed == ".jpe" else guessed.lstrip(".")
    return default


def sniff_image(data: bytes) -> tuple[str, str]:
    """Return (extension, content type) for common image formats; JPEG otherwise."""
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp", "image/webp"
    for signature, ext, mime in _IMAGE_SIGNATURES:
        if data.startswith(signature):
            return ext, mime
    return "jpg", "image/jpeg"


def content_key(folder: str, data: bytes, ext: str) -> str:
    """{folder}/{sha256}.{ext}: identical bytes in one folder share a key."""
    return f"{folder}/{content_hash(data)}.{ext}"
