"""Format selection and expiry computation."""

from typing import Iterable, Optional
from urllib.parse import parse_qs, urlparse

from .models import MP4A, OPUS, AudioFormat

DEFAULT_TTL_SECONDS = 6 * 60 * 60
EXPIRY_MARGIN_SECONDS = 5 * 60


def select_best_format(
    formats: Iterable[AudioFormat], preferred_codec: str = MP4A
) -> Optional[AudioFormat]:
    """Pick the format to play.

    Preference order:
    1. Highest bitrate format in the preferred codec
    2. Highest bitrate format in the other codec
    3. Highest bitrate format of any codec

    Formats without a usable url are never returned.
    """
    playable = sorted(
        (f for f in formats if f.is_playable),
        key=lambda f: f.bitrate_bps,
        reverse=True,
    )
    if not playable:
        return None

    fallback_codec = OPUS if preferred_codec == MP4A else MP4A
    for codec in (preferred_codec, fallback_codec):
        for audio_format in playable:
            if audio_format.codec == codec:
                return audio_format
    return playable[0]


def url_expiry(url: Optional[str]) -> Optional[float]:
    """Read the Unix timestamp embedded in a signed stream URL's expire parameter."""
    if not url:
        return None
    try:
        values = parse_qs(urlparse(url).query).get("expire")
    except ValueError:
        return None
    if not values:
        return None
    try:
        return float(int(values[0]))
    except ValueError:
        return None


def compute_expires_at(
    audio_format: Optional[AudioFormat],
    now: float,
    default_ttl: float = DEFAULT_TTL_SECONDS,
    margin: float = EXPIRY_MARGIN_SECONDS,
) -> float:
    """Compute when cached formats stop being trustworthy.

    Uses the chosen format's URL expiry minus a safety margin, or now plus
    the default TTL when the URL carries no expiry.
    """
    expire = url_expiry(audio_format.url) if audio_format else None
    if expire is None:
        return now + default_ttl
    return expire - margin
