"""Last-resort stream resolution using yt-dlp.

yt-dlp handles signature deciphering and client rotation itself, so it works
when the lightweight APIs don't. It is also by far the slowest option.
"""

from typing import Any, Optional

import yt_dlp
from loguru import logger

from ..exceptions import NoPlayableFormatsError, ProviderError, ProviderTimeoutError
from ..models import AudioFormat, ResolvedStream

WATCH_URL = "https://www.youtube.com/watch?v={track_id}"

# Formats returned to the resolver, best first
MAX_FORMATS = 3


def _classify_download_error(error: Exception) -> str:
    """Turn a yt-dlp DownloadError into a short failure reason."""
    error_msg = str(error).lower()
    if "sign in" in error_msg or "age" in error_msg:
        return "age restricted"
    if "unavailable" in error_msg or "deleted" in error_msg or "private" in error_msg:
        return "video unavailable"
    if "copyright" in error_msg or "blocked" in error_msg:
        return "blocked"
    return f"extraction failed: {error}"


def extract_audio_formats(info: dict[str, Any]) -> list[AudioFormat]:
    """Pick audio-only formats from yt-dlp info, highest bitrate first.

    Args:
        info: Info dict returned by YoutubeDL.extract_info

    Returns:
        Up to MAX_FORMATS formats with direct http urls
    """
    duration = int(info.get("duration") or 0)
    candidates = [
        f
        for f in info.get("formats") or []
        if f.get("acodec") not in (None, "none")
        and f.get("vcodec") in (None, "none")
        and str(f.get("url") or "").startswith("http")
    ]
    candidates.sort(key=lambda f: f.get("tbr") or f.get("abr") or 0, reverse=True)

    formats = []
    for item in candidates[:MAX_FORMATS]:
        acodec = item.get("acodec") or ""
        is_mp4 = acodec.startswith("mp4a") or item.get("ext") == "m4a"
        kbps = item.get("abr") or item.get("tbr") or 0
        formats.append(
            AudioFormat(
                codec="mp4a" if is_mp4 else "opus",
                bitrate_bps=int(kbps * 1000),
                duration_sec=duration,
                url=item["url"],
                size_bytes=int(item.get("filesize") or item.get("filesize_approx") or 0),
                mime_type="audio/mp4" if is_mp4 else "audio/webm",
                quality_label=item.get("format_note") or "",
                itag=int(item["format_id"]) if str(item.get("format_id", "")).isdigit() else 0,
            )
        )
    return formats


class YtDlpProvider:
    """Resolves streams by running yt-dlp's full extractor."""

    name = "ytdlp"

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    def resolve(self, track_id: str, timeout: Optional[float] = None) -> ResolvedStream:
        timeout = timeout or self.timeout
        ydl_opts = {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "extract_flat": False,  # Need actual URLs, not just metadata
            "socket_timeout": timeout,
        }

        try:
            with yt_dlp.YoutubeDL(ydl_opts) as ydl:
                info = ydl.extract_info(WATCH_URL.format(track_id=track_id), download=False)
        except yt_dlp.utils.DownloadError as e:
            error_msg = str(e).lower()
            if "timed out" in error_msg:
                raise ProviderTimeoutError(f"{self.name} timed out after {timeout}s") from e
            raise ProviderError(f"{self.name}: {_classify_download_error(e)}") from e

        if not info:
            raise ProviderError(f"{self.name} returned no info for {track_id}")

        formats = extract_audio_formats(info)
        if not formats:
            raise NoPlayableFormatsError(f"{self.name}: no audio-only formats with urls")

        logger.debug(f"{self.name} returned {len(formats)} audio formats for {track_id}")
        return ResolvedStream(
            track_id=track_id,
            formats=tuple(formats),
            provider=self.name,
            title=info.get("title"),
            duration=int(info.get("duration") or 0) or None,
        )

    def __repr__(self) -> str:
        return "YtDlpProvider()"
