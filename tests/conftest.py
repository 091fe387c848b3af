"""Shared fixtures: stub providers and format builders instead of network calls."""

import threading
import time
from typing import Callable, Optional

import pytest

from stream_minion.domain.streaming.models import AudioFormat, ResolvedStream


class StubProvider:
    """Provider double that records calls and returns or raises on demand."""

    def __init__(
        self,
        name: str,
        formats: tuple = (),
        error: Optional[Exception] = None,
        delay: float = 0.0,
        timeout: float = 1.0,
    ):
        self.name = name
        self.formats = tuple(formats)
        self.error = error
        self.delay = delay
        self.timeout = timeout
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def resolve(self, track_id: str, timeout: Optional[float] = None) -> ResolvedStream:
        with self._lock:
            self.calls.append(track_id)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ResolvedStream(track_id=track_id, formats=self.formats, provider=self.name)


@pytest.fixture
def stub_provider() -> type[StubProvider]:
    return StubProvider


@pytest.fixture
def make_format() -> Callable[..., AudioFormat]:
    """Build an AudioFormat with a usable url unless told otherwise."""

    def _make(
        codec: str = "mp4a",
        kbps: int = 128,
        expire: Optional[int] = None,
        url: Optional[str] = "",
    ) -> AudioFormat:
        if url == "":
            url = f"https://media.example.com/audio?itag={kbps}&codec={codec}"
            if expire is not None:
                url += f"&expire={expire}"
        return AudioFormat(
            codec=codec,
            bitrate_bps=kbps * 1000,
            duration_sec=200,
            url=url,
            mime_type="audio/mp4" if codec == "mp4a" else "audio/webm",
        )

    return _make


@pytest.fixture
def clock() -> Callable[[], float]:
    """Controllable wall clock; set clock.now to move time."""

    class _Clock:
        now = 1_800_000_000.0

        def __call__(self) -> float:
            return self.now

    return _Clock()
