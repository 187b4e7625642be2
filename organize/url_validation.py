"""Image URL checks applied before anything is downloaded.

Catalog records come straight from scrapers of many brand sites, so the
uploader only accepts plain http(s) URLs and normalizes the odd
protocol-relative or whitespace-padded value.
"""

import re
from typing import Optional
from urllib.parse import urlparse

__all__ = [
    "URLValidationError",
    "sanitize_url",
    "validate_image_url",
    "extension_for",
]


class URLValidationError(ValueError):
    """Raised when an image URL is unusable."""


DANGEROUS_SCHEMES = {"javascript", "data", "vbscript", "file"}

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".avif", ".gif"}

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/avif": ".avif",
    "image/gif": ".gif",
}


def sanitize_url(url: str) -> str:
    """Strip whitespace and control characters, and resolve '//' URLs to https."""
    if not url:
        return ""

    url = url.strip()
    url = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", url)
    if url.startswith("//"):
        url = "https:" + url
    return url


def validate_image_url(url: Optional[str]) -> str:
    """Validate an image URL from a catalog record.

    Returns:
        The sanitized URL

    Raises:
        URLValidationError: If the URL is empty, not http(s), or has no host
    """
    if not url or not isinstance(url, str):
        raise URLValidationError("image URL is empty")

    url = sanitize_url(url)
    parsed = urlparse(url)

    scheme = parsed.scheme.lower()
    if scheme in DANGEROUS_SCHEMES:
        raise URLValidationError(f"Dangerous URL scheme in image: {scheme}")
    if scheme not in ("http", "https"):
        raise URLValidationError(f"Invalid image URL scheme: {scheme or '(none)'}")
    if not parsed.netloc:
        raise URLValidationError(f"Image URL has no host: {url}")

    return url


def extension_for(url: str, content_type: Optional[str] = None) -> str:
    """Pick a file extension from the response content type, then the URL path."""
    if content_type:
        ext = CONTENT_TYPE_EXTENSIONS.get(content_type.split(";")[0].strip().lower())
        if ext:
            return ext

    path = urlparse(url).path.lower()
    for ext in IMAGE_EXTENSIONS:
        if path.endswith(ext):
            return ".jpg" if ext == ".jpeg" else ext
    return ".jpg"
