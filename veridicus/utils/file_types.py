"""Upload content-type policy and magic-byte sniffing."""

import re
from typing import Optional

OCTET_STREAM = "application/octet-stream"

# Declared types that must start with a known signature.
MAGIC_SIGNATURES = {
    "application/pdf": (b"%PDF",),
    "image/png": (b"\x89PNG\r\n\x1a\n",),
    "image/jpeg": (b"\xff\xd8\xff",),
    "image/jpg": (b"\xff\xd8\xff",),
}

ALLOWED_PREFIXES = ("text/", "audio/", "video/", "image/")

ALLOWED_TYPES = frozenset(
    {
        OCTET_STREAM,
        "application/pdf",
        "application/json",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    }
)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def normalize_mime(content_type: Optional[str]) -> str:
    """Lower-case the MIME type and drop parameters such as ``charset``."""
    if not content_type:
        return OCTET_STREAM
    return content_type.split(";", 1)[0].strip().lower() or OCTET_STREAM


def top_level_type(mime_type: str) -> str:
    return normalize_mime(mime_type).split("/", 1)[0]


def is_allowed_type(mime_type: str) -> bool:
    mime_type = normalize_mime(mime_type)
    return mime_type in ALLOWED_TYPES or mime_type.startswith(ALLOWED_PREFIXES)


def matches_signature(mime_type: str, head: bytes) -> bool:
    """Check leading bytes against the signature for the declared type.

    Types without a registered signature always match.
    """
    signatures = MAGIC_SIGNATURES.get(normalize_mime(mime_type))
    if signatures is None:
        return True
    return any(head.startswith(sig) for sig in signatures)


def sanitize_filename(filename: Optional[str]) -> str:
    name = (filename or "upload").rsplit("/", 1)[-1].rsplit("\\", 1)[-1]
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", name).strip("._")
    return cleaned[:128] or "upload"
