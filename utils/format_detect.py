from enum import Enum
from typing import Callable


class ImageFormat(str, Enum):
    """Raster formats the proxy will serve.

    SVG (active content), BMP and TIFF (parser attack surface) are excluded
    on purpose.
    """

    JPEG = "jpeg"
    PNG = "png"
    GIF = "gif"
    WEBP = "webp"
    AVIF = "avif"


# MIME type mapping
MIME_TYPES = {
    ImageFormat.JPEG: "image/jpeg",
    ImageFormat.PNG: "image/png",
    ImageFormat.GIF: "image/gif",
    ImageFormat.WEBP: "image/webp",
    ImageFormat.AVIF: "image/avif",
}

FORMATS_BY_MIME = {mime: fmt for fmt, mime in MIME_TYPES.items()}

SAFE_IMAGE_TYPES = frozenset(MIME_TYPES.values())

# Bytes needed before any signature is checked
MIN_SIGNATURE_LENGTH = 12


def _is_webp(data: bytes) -> bool:
    # RIFF....WEBP
    return data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def _is_avif(data: bytes) -> bool:
    # ISO BMFF: ....ftyp
    return data[4:8] == b"ftyp"


# Either a fixed prefix or a predicate over the leading bytes
SIGNATURES: dict[ImageFormat, bytes | Callable[[bytes], bool]] = {
    ImageFormat.JPEG: b"\xff\xd8\xff",
    ImageFormat.PNG: b"\x89PNG",
    ImageFormat.GIF: b"GIF8",
    ImageFormat.WEBP: _is_webp,
    ImageFormat.AVIF: _is_avif,
}


def normalize_content_type(raw: str | None) -> str:
    """Strip parameters and case from a Content-Type header value.

    ``"Image/PNG; charset=binary"`` -> ``"image/png"``.
    """
    if not raw:
        return ""
    return raw.split(";", 1)[0].strip().lower()


def is_safe_content_type(content_type: str) -> bool:
    return content_type in SAFE_IMAGE_TYPES


def matches_signature(data: bytes, fmt: ImageFormat) -> bool:
    """Check the leading bytes of ``data`` against one format's signature."""
    if len(data) < MIN_SIGNATURE_LENGTH:
        return False
    signature = SIGNATURES[fmt]
    if callable(signature):
        return signature(data)
    return data.startswith(signature)


def validate_magic_bytes(data: bytes, claimed_type: str) -> bool:
    """Validate that ``data`` really is the image type the upstream claimed.

    Never trusts the Content-Type header on its own: a polyglot or
    mislabeled file fails here even if its declared type is allowed.

    Args:
        data: Full response body (only the first 12 bytes are inspected).
        claimed_type: Normalized Content-Type, e.g. ``"image/png"``.

    Returns:
        True only if the claimed type is allow-listed and its signature
        matches.
    """
    fmt = FORMATS_BY_MIME.get(claimed_type)
    if fmt is None:
        return False
    return matches_signature(data, fmt)
