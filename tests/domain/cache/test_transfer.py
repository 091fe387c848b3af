"""Tests for HTTP payload transfer."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from stream_minion.domain.cache.transfer import AUDIO_HEADERS, fetch_artwork, stream_audio
from stream_minion.domain.streaming.exceptions import DownloadError

URL = "https://media.example.com/audio?expire=1900000000"


def _session(status_code=200, chunks=(b"abc", b"", b"def"), error=None) -> MagicMock:
    session = MagicMock()
    response = MagicMock()
    response.status_code = status_code
    response.iter_content.return_value = iter(chunks)
    response.__enter__.return_value = response
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value = response
    return session


class TestStreamAudio:
    """Tests for stream_audio."""

    def test_yields_non_empty_chunks(self) -> None:
        session = _session()
        assert list(stream_audio(URL, session=session)) == [b"abc", b"def"]

    def test_request_headers(self) -> None:
        session = _session()
        list(stream_audio(URL, timeout=7, session=session))

        session.get.assert_called_once_with(
            URL, headers=AUDIO_HEADERS, stream=True, timeout=(7, 7)
        )
        assert AUDIO_HEADERS["Accept-Encoding"] == "identity"
        assert AUDIO_HEADERS["Range"] == "bytes=0-"

    def test_partial_content_accepted(self) -> None:
        assert list(stream_audio(URL, session=_session(status_code=206))) == [b"abc", b"def"]

    def test_http_error(self) -> None:
        session = _session(status_code=403)
        with pytest.raises(DownloadError, match="403"):
            list(stream_audio(URL, session=session))
        session.get.return_value.__exit__.assert_called_once()

    def test_connect_timeout(self) -> None:
        with pytest.raises(DownloadError, match="Timed out"):
            list(stream_audio(URL, session=_session(error=requests.Timeout())))

    def test_deadline_exceeded(self) -> None:
        session = _session(chunks=(b"a", b"b"))
        ticks = iter([0.0, 1.0])
        with patch(
            "stream_minion.domain.cache.transfer.time.monotonic",
            side_effect=lambda: next(ticks, 100.0),
        ):
            with pytest.raises(DownloadError, match="exceeded"):
                list(stream_audio(URL, timeout=30, session=session))

    def test_interrupted_transfer(self) -> None:
        session = _session()
        session.get.return_value.iter_content.side_effect = requests.ConnectionError("reset")
        with pytest.raises(DownloadError, match="interrupted"):
            list(stream_audio(URL, session=session))


class TestFetchArtwork:
    """Tests for best-effort artwork fetching."""

    def test_returns_content(self) -> None:
        with patch("stream_minion.domain.cache.transfer.requests.get") as mock_get:
            mock_get.return_value.content = b"jpeg"
            assert fetch_artwork("https://img.example/a.jpg") == b"jpeg"

    def test_failure_returns_none(self) -> None:
        with patch(
            "stream_minion.domain.cache.transfer.requests.get",
            side_effect=requests.ConnectionError("nope"),
        ):
            assert fetch_artwork("https://img.example/a.jpg") is None
