"""HTTP transfer of audio payloads and artwork."""

import time
from typing import Iterator, Optional

import requests
from loguru import logger

from ..streaming.exceptions import DownloadError
from ..streaming.providers.base import BROWSER_USER_AGENT

CHUNK_SIZE = 64 * 1024

AUDIO_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "*/*",
    # Compressed transfer breaks Content-Length checks on audio payloads
    "Accept-Encoding": "identity",
    "Range": "bytes=0-",
}


def stream_audio(
    url: str,
    timeout: float = 30.0,
    session: Optional[requests.Session] = None,
) -> Iterator[bytes]:
    """Yield the payload at url in chunks.

    The whole transfer must finish within timeout seconds (monotonic clock);
    the response is closed however iteration ends.

    Raises:
        DownloadError: On HTTP errors, network errors or when the deadline passes
    """
    http = session or requests
    deadline = time.monotonic() + timeout

    try:
        response = http.get(url, headers=AUDIO_HEADERS, stream=True, timeout=(timeout, timeout))
    except requests.Timeout as e:
        raise DownloadError(f"Timed out connecting after {timeout}s") from e
    except requests.RequestException as e:
        raise DownloadError(f"Request failed: {e}") from e

    with response:
        if response.status_code not in (200, 206):
            raise DownloadError(f"HTTP {response.status_code} fetching audio")

        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise DownloadError(f"Download exceeded {timeout}s")
                if chunk:
                    yield chunk
        except requests.RequestException as e:
            raise DownloadError(f"Transfer interrupted: {e}") from e


def fetch_artwork(url: str, timeout: float = 10.0) -> Optional[bytes]:
    """Fetch cover art, best effort. Returns None on any HTTP failure."""
    try:
        response = requests.get(url, headers={"User-Agent": BROWSER_USER_AGENT}, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.warning(f"Could not fetch artwork from {url}: {e}")
        return None
    return response.content
