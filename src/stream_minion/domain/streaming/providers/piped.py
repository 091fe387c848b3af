"""
Piped API provider.

Piped instances proxy YouTube's stream metadata through a simple JSON API.
They are fast when healthy and frequently not, so the resolver races them.
"""

from typing import Any, Optional
from urllib.parse import urlparse

import requests
from loguru import logger

from ..exceptions import NoPlayableFormatsError, ProviderError, ProviderTimeoutError
from ..models import AudioFormat, ResolvedStream, codec_from_mime
from .base import create_session


def parse_piped_streams(track_id: str, data: dict[str, Any], provider: str) -> ResolvedStream:
    """Convert a Piped /streams response into a ResolvedStream.

    Raises:
        NoPlayableFormatsError: If no audio stream carries a url
    """
    duration = int(data.get("duration") or 0)
    formats = tuple(
        AudioFormat(
            codec=codec_from_mime(stream.get("codec") or stream.get("mimeType") or ""),
            bitrate_bps=int(stream.get("bitrate") or 0),
            duration_sec=duration,
            url=stream["url"],
            size_bytes=int(stream.get("contentLength") or 0),
            mime_type=stream.get("mimeType") or "",
            quality_label=stream.get("quality") or "",
            itag=int(stream.get("itag") or 0),
        )
        for stream in data.get("audioStreams") or []
        if stream.get("url")
    )
    if not formats:
        raise NoPlayableFormatsError(f"{provider}: no audio streams with urls")

    return ResolvedStream(
        track_id=track_id,
        formats=formats,
        provider=provider,
        title=data.get("title"),
        duration=duration or None,
    )


class PipedProvider:
    """Resolves streams through one Piped API instance."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.name = f"piped:{urlparse(self.base_url).netloc or self.base_url}"
        self._session = session or create_session()

    def resolve(self, track_id: str, timeout: Optional[float] = None) -> ResolvedStream:
        timeout = timeout or self.timeout
        url = f"{self.base_url}/streams/{track_id}"

        try:
            with self._session.get(url, timeout=(timeout, timeout)) as response:
                if not response.ok:
                    raise ProviderError(f"{self.name} returned HTTP {response.status_code}")
                data = response.json()
        except requests.Timeout as e:
            raise ProviderTimeoutError(f"{self.name} timed out after {timeout}s") from e
        except requests.RequestException as e:
            raise ProviderError(f"{self.name} request failed: {e}") from e
        except ValueError as e:
            raise ProviderError(f"{self.name} returned invalid JSON") from e

        if data.get("error"):
            raise ProviderError(f"{self.name} error: {data['error']}")

        stream = parse_piped_streams(track_id, data, self.name)
        logger.debug(f"{self.name} returned {len(stream.formats)} audio formats for {track_id}")
        return stream

    def __repr__(self) -> str:
        return f"PipedProvider({self.base_url!r})"
