"""
Streaming domain models.

Contains data structures for audio formats and resolved streams.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

MP4A = "mp4a"
OPUS = "opus"

# Codec -> file extension used for cached payloads
CODEC_EXTENSIONS = {
    MP4A: ".m4a",
    OPUS: ".webm",
}


def codec_from_mime(value: str) -> str:
    """Classify a codec or MIME string as mp4a or opus."""
    lowered = (value or "").lower()
    if "mp4" in lowered or "m4a" in lowered:
        return MP4A
    return OPUS


@dataclass(frozen=True)
class AudioFormat:
    """A single audio rendition of a track.

    A format without a url is unusable and is never selected for playback.
    """

    codec: str  # 'mp4a' | 'opus'
    bitrate_bps: int = 0
    duration_sec: int = 0
    url: Optional[str] = None
    size_bytes: int = 0
    mime_type: str = ""
    quality_label: str = ""
    itag: int = 0

    @property
    def is_playable(self) -> bool:
        return bool(self.url) and self.url.startswith("http")

    @property
    def extension(self) -> str:
        return CODEC_EXTENSIONS.get(self.codec, ".webm")

    def to_dict(self) -> dict[str, Any]:
        return {
            "itag": self.itag,
            "codec": self.codec,
            "bitrate": self.bitrate_bps,
            "duration": self.duration_sec,
            "url": self.url,
            "size": self.size_bytes,
            "mime_type": self.mime_type,
            "quality": self.quality_label,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AudioFormat":
        return cls(
            codec=data.get("codec") or codec_from_mime(data.get("mime_type", "")),
            bitrate_bps=int(data.get("bitrate") or 0),
            duration_sec=int(data.get("duration") or 0),
            url=data.get("url"),
            size_bytes=int(data.get("size") or 0),
            mime_type=data.get("mime_type") or "",
            quality_label=data.get("quality") or "",
            itag=int(data.get("itag") or 0),
        )


@dataclass(frozen=True)
class ResolvedStream:
    """A ranked set of audio formats for one track plus the time they stop being valid.

    expires_at is a Unix timestamp. Providers return streams with expires_at=0;
    the resolver stamps the real value before caching.
    """

    track_id: str
    formats: tuple[AudioFormat, ...]
    expires_at: float = 0.0
    provider: Optional[str] = None
    title: Optional[str] = None
    duration: Optional[int] = None
    cached: bool = field(default=False, compare=False)

    @property
    def playable_formats(self) -> tuple[AudioFormat, ...]:
        return tuple(f for f in self.formats if f.is_playable)

    def best_format(self, preferred_codec: str = MP4A) -> Optional[AudioFormat]:
        from .selection import select_best_format

        return select_best_format(self.formats, preferred_codec)
