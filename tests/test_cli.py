"""Tests for the command line entry point."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from stream_minion import cli
from stream_minion.core.config import Config
from stream_minion.domain.cache import SweepResult
from stream_minion.domain.streaming import AudioFormat, ResolvedStream
from stream_minion.domain.streaming.exceptions import InvalidIdentifierError
from stream_minion.manager import DownloadResult

TRACK_ID = "abc12345678"


@pytest.fixture
def manager():
    manager = MagicMock()
    with patch.object(cli, "load_config", return_value=Config()), patch.object(
        cli, "_setup"
    ), patch.object(cli.CacheManager, "from_config", return_value=manager):
        yield manager


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc_info:
        cli.main(argv)
    return exc_info.value.code


class TestParser:
    """Tests for build_parser."""

    def test_download_requires_title_and_artist(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["download", TRACK_ID, "--title", "T"])

    def test_prefetch_accepts_many_ids(self) -> None:
        args = cli.build_parser().parse_args(["prefetch", "a", "b", "--timeout", "2.5"])
        assert args.track_ids == ["a", "b"]
        assert args.timeout == 2.5

    def test_no_subcommand_exits(self) -> None:
        assert _run([]) == 1


class TestCommands:
    """Tests for subcommand dispatch."""

    def test_url(self, manager, capsys) -> None:
        manager.get_stream_url.return_value = "/tmp/cache/abc12345678.m4a"

        assert _run(["url", TRACK_ID]) == 0
        assert capsys.readouterr().out.strip() == "/tmp/cache/abc12345678.m4a"
        manager.close.assert_called_once()

    def test_url_unresolvable(self, manager) -> None:
        manager.get_stream_url.return_value = None
        assert _run(["url", TRACK_ID]) == 1

    def test_resolve_prints_json(self, manager, capsys) -> None:
        manager.resolve.return_value = ResolvedStream(
            track_id=TRACK_ID,
            formats=(AudioFormat("opus", bitrate_bps=160_000, url="https://a/b"),),
            expires_at=1_900_000_000.0,
            provider="ytdlp",
        )

        assert _run(["resolve", TRACK_ID]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["provider"] == "ytdlp"
        assert data["formats"][0]["codec"] == "opus"

    def test_download(self, manager, capsys) -> None:
        manager.download.return_value = DownloadResult(
            success=True, path=Path("/music/A/B/T.m4a")
        )

        assert _run(["download", TRACK_ID, "--title", "T", "--artist", "A", "--album", "B"]) == 0
        manager.download.assert_called_once_with(TRACK_ID, "T", "A", "B", artwork_url=None)
        assert "Saved to" in capsys.readouterr().out

    def test_prefetch_waits_and_checks_cache(self, manager) -> None:
        manager.scheduler.wait_idle.return_value = True
        manager.get_prefetch_status.return_value = {"cached_ids": [TRACK_ID]}

        assert _run(["prefetch", f"MPED{TRACK_ID}"]) == 0
        manager.scheduler.start.assert_called_once()

    def test_prefetch_missing_id_fails(self, manager, capsys) -> None:
        manager.scheduler.wait_idle.return_value = True
        manager.get_prefetch_status.return_value = {"cached_ids": []}

        assert _run(["prefetch", TRACK_ID]) == 1
        assert "Not cached" in capsys.readouterr().err

    def test_sweep_reports_failures(self, manager) -> None:
        manager.sweep_cache.return_value = SweepResult(deleted_by_age=["y"], failed=1)
        assert _run(["sweep"]) == 1

    def test_invalidate_invalid_id(self, manager) -> None:
        manager.invalidate.side_effect = InvalidIdentifierError("nope")
        assert _run(["invalidate", "nope"]) == 1
        manager.close.assert_called_once()

    def test_serve_does_not_build_manager(self, manager) -> None:
        with patch.object(cli, "run_serve", return_value=0) as mock_serve:
            assert _run(["serve", "--port", "9000"]) == 0

        mock_serve.assert_called_once()
        assert mock_serve.call_args.args[2] == 9000
        manager.close.assert_not_called()
