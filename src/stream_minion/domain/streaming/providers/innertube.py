"""
Innertube player API provider.

YouTube's internal player endpoint answers differently depending on which
client the request claims to be. Some clients get direct urls, others only
get signature-ciphered formats or a playability error, and which ones work
changes over time. Each client flavor is exposed as its own provider so the
resolver can walk them in priority order.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import requests
from loguru import logger

from ..exceptions import NoPlayableFormatsError, ProviderError, ProviderTimeoutError
from ..models import AudioFormat, ResolvedStream, codec_from_mime
from .base import create_session


@dataclass(frozen=True)
class InnertubeClient:
    """Client identity sent in the Innertube request context."""

    name: str
    version: str
    user_agent: str
    extra: dict[str, Any] = field(default_factory=dict)
    host: str = "https://www.youtube.com"

    def context(self) -> dict[str, Any]:
        client = {
            "clientName": self.name,
            "clientVersion": self.version,
            "hl": "en",
            "gl": "US",
        }
        client.update(self.extra)
        return {"client": client}


INNERTUBE_CLIENTS: dict[str, InnertubeClient] = {
    "ANDROID_MUSIC": InnertubeClient(
        name="ANDROID_MUSIC",
        version="7.27.52",
        user_agent="com.google.android.apps.youtube.music/7.27.52 (Linux; U; Android 11) gzip",
        extra={"androidSdkVersion": 30, "osName": "Android", "osVersion": "11"},
        host="https://music.youtube.com",
    ),
    "IOS": InnertubeClient(
        name="IOS",
        version="19.45.4",
        user_agent="com.google.ios.youtube/19.45.4 (iPhone16,2; U; CPU iOS 18_1_0 like Mac OS X;)",
        extra={"deviceMake": "Apple", "deviceModel": "iPhone16,2", "osName": "iPhone", "osVersion": "18.1.0"},
    ),
    "TVHTML5_SIMPLY_EMBEDDED_PLAYER": InnertubeClient(
        name="TVHTML5_SIMPLY_EMBEDDED_PLAYER",
        version="2.0",
        user_agent="Mozilla/5.0 (PlayStation; PlayStation 4/12.00) AppleWebKit/605.1.15 (KHTML, like Gecko)",
    ),
    "WEB_REMIX": InnertubeClient(
        name="WEB_REMIX",
        version="1.20241127.01.00",
        user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko)",
        host="https://music.youtube.com",
    ),
}


def parse_player_response(track_id: str, data: dict[str, Any], provider: str) -> ResolvedStream:
    """Convert an Innertube player response into a ResolvedStream.

    Only audio formats with a direct url are kept; ciphered formats need
    signature resolution, which is the yt-dlp tier's job.

    Raises:
        ProviderError: If the video is not playable for this client
        NoPlayableFormatsError: If no audio format carries a url
    """
    playability = data.get("playabilityStatus") or {}
    status = playability.get("status", "UNKNOWN")
    if status != "OK":
        reason = playability.get("reason") or status
        raise ProviderError(f"{provider}: not playable ({reason})")

    streaming_data = data.get("streamingData") or {}
    details = data.get("videoDetails") or {}
    duration = int(details.get("lengthSeconds") or 0)

    formats = []
    for item in (streaming_data.get("adaptiveFormats") or []) + (streaming_data.get("formats") or []):
        mime_type = item.get("mimeType") or ""
        if not mime_type.startswith("audio/") or not item.get("url"):
            continue
        approx_ms = int(item.get("approxDurationMs") or 0)
        formats.append(
            AudioFormat(
                codec=codec_from_mime(mime_type),
                bitrate_bps=int(item.get("bitrate") or item.get("averageBitrate") or 0),
                duration_sec=approx_ms // 1000 if approx_ms else duration,
                url=item["url"],
                size_bytes=int(item.get("contentLength") or 0),
                mime_type=mime_type.split(";")[0],
                quality_label=item.get("audioQuality") or item.get("quality") or "",
                itag=int(item.get("itag") or 0),
            )
        )

    if not formats:
        raise NoPlayableFormatsError(f"{provider}: no audio formats with urls")

    return ResolvedStream(
        track_id=track_id,
        formats=tuple(formats),
        provider=provider,
        title=details.get("title"),
        duration=duration or None,
    )


class InnertubeProvider:
    """Resolves streams by calling the player endpoint as one client flavor."""

    def __init__(
        self,
        client: InnertubeClient,
        timeout: float = 8.0,
        session: Optional[requests.Session] = None,
    ):
        self.client = client
        self.timeout = timeout
        self.name = f"innertube:{client.name}"
        self._session = session or create_session(client.user_agent)

    @classmethod
    def from_client_name(cls, client_name: str, timeout: float = 8.0) -> "InnertubeProvider":
        """Build a provider for a known client flavor.

        Raises:
            KeyError: If the client name is unknown
        """
        return cls(INNERTUBE_CLIENTS[client_name], timeout=timeout)

    def resolve(self, track_id: str, timeout: Optional[float] = None) -> ResolvedStream:
        timeout = timeout or self.timeout
        payload = {
            "context": self.client.context(),
            "videoId": track_id,
            "contentCheckOk": True,
            "racyCheckOk": True,
        }
        headers = {
            "User-Agent": self.client.user_agent,
            "Origin": self.client.host,
            "Content-Type": "application/json",
        }

        try:
            with self._session.post(
                f"{self.client.host}/youtubei/v1/player",
                params={"prettyPrint": "false"},
                json=payload,
                headers=headers,
                timeout=(timeout, timeout),
            ) as response:
                if not response.ok:
                    raise ProviderError(f"{self.name} returned HTTP {response.status_code}")
                data = response.json()
        except requests.Timeout as e:
            raise ProviderTimeoutError(f"{self.name} timed out after {timeout}s") from e
        except requests.RequestException as e:
            raise ProviderError(f"{self.name} request failed: {e}") from e
        except ValueError as e:
            raise ProviderError(f"{self.name} returned invalid JSON") from e

        stream = parse_player_response(track_id, data, self.name)
        logger.debug(f"{self.name} returned {len(stream.formats)} audio formats for {track_id}")
        return stream

    def __repr__(self) -> str:
        return f"InnertubeProvider({self.client.name!r})"
