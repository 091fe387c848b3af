"""Track identifier normalization and validation."""

import re
from urllib.parse import parse_qs, urlparse

from .exceptions import InvalidIdentifierError

# Prefixes some upstream listings prepend to the plain video id
VENDOR_PREFIXES = ("MPED",)

TRACK_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")

_PATH_ID_PATTERN = re.compile(r"/(?:embed|shorts|live|v)/([A-Za-z0-9_-]{11})")


def _id_from_url(value: str) -> str:
    """Pull the video id out of a watch/short/embed URL, or return value unchanged."""
    parsed = urlparse(value)
    if not parsed.scheme or not parsed.netloc:
        return value

    host = parsed.netloc.lower()
    if host.endswith("youtu.be"):
        return parsed.path.lstrip("/").split("/")[0]

    query_id = parse_qs(parsed.query).get("v")
    if query_id:
        return query_id[0]

    match = _PATH_ID_PATTERN.search(parsed.path)
    if match:
        return match.group(1)

    return value


def normalize_track_id(raw_id: str) -> str:
    """Normalize an identifier without validating it.

    Strips whitespace, reduces YouTube URLs to their id and removes known
    vendor prefixes. Two identifiers are equal when their normalized forms are.

    Example:
        "MPEDdQw4w9WgXcQ" -> "dQw4w9WgXcQ"
        "https://youtu.be/dQw4w9WgXcQ" -> "dQw4w9WgXcQ"
    """
    if not raw_id:
        return ""

    value = _id_from_url(raw_id.strip())
    for prefix in VENDOR_PREFIXES:
        if value.startswith(prefix):
            value = value[len(prefix):]
    return value


def is_valid_track_id(track_id: str) -> bool:
    """Check if an already-normalized identifier is well formed."""
    return bool(track_id) and TRACK_ID_PATTERN.match(track_id) is not None


def parse_track_id(raw_id: str) -> str:
    """Normalize and validate an identifier.

    Raises:
        InvalidIdentifierError: If the normalized id is not a valid video id
    """
    if not isinstance(raw_id, str):
        raise InvalidIdentifierError(raw_id)

    track_id = normalize_track_id(raw_id)
    if not is_valid_track_id(track_id):
        raise InvalidIdentifierError(raw_id)
    return track_id
