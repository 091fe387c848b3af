"""
Stream Minion CLI - Entry point

Resolves, caches and downloads online audio from the command line, and can
launch the HTTP API.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from .core.config import Config, ensure_directories, load_config
from .core.output import setup_loguru
from .domain.streaming import StreamError, normalize_track_id
from .manager import CacheManager

# Repository root, where the web package lives
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def _setup(config: Config) -> None:
    ensure_directories(config)
    setup_loguru(
        log_file=Path(config.logging.log_file) if config.logging.log_file else None,
        level=config.logging.level,
        console_output=config.logging.console_output,
    )


def run_resolve(manager: CacheManager, track_id: str) -> int:
    """Print every resolved format as JSON."""
    try:
        stream = manager.resolve(track_id)
    except StreamError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(
        json.dumps(
            {
                "track_id": stream.track_id,
                "provider": stream.provider,
                "title": stream.title,
                "duration": stream.duration,
                "expires_at": stream.expires_at,
                "cached": stream.cached,
                "formats": [f.to_dict() for f in stream.formats],
            },
            indent=2,
        )
    )
    return 0


def run_url(manager: CacheManager, track_id: str) -> int:
    reference = manager.get_stream_url(track_id)
    if reference is None:
        print(f"Could not resolve {track_id}", file=sys.stderr)
        return 1
    print(reference)
    return 0


def run_download(
    manager: CacheManager,
    track_id: str,
    title: str,
    artist: str,
    album: str,
    artwork_url: Optional[str] = None,
) -> int:
    result = manager.download(track_id, title, artist, album, artwork_url=artwork_url)
    if not result.success:
        print(f"Download failed: {result.error}", file=sys.stderr)
        return 1
    print(f"Saved to: {result.path}")
    return 0


def run_prefetch(
    manager: CacheManager, track_ids: list[str], timeout: Optional[float] = None
) -> int:
    """Cache tracks and wait for the workers to finish."""
    queued = manager.prefetch_videos(track_ids)
    print(f"Queued {queued} of {len(track_ids)} track(s)")

    if not manager.scheduler.wait_idle(timeout):
        print("Timed out waiting for downloads", file=sys.stderr)
        return 1

    cached = set(manager.get_prefetch_status()["cached_ids"])
    missing = [t for t in track_ids if normalize_track_id(t) not in cached]
    for track_id in missing:
        print(f"Not cached: {track_id}", file=sys.stderr)
    return 1 if missing else 0


def run_sweep(manager: CacheManager) -> int:
    result = manager.sweep_cache()
    print(f"Deleted by age:  {len(result.deleted_by_age)}")
    print(f"Deleted by size: {len(result.deleted_by_size)}")
    print(f"Freed:           {result.freed_bytes / (1024 * 1024):.1f} MB")
    if result.failed:
        print(f"Failed deletes:  {result.failed}")
        return 1
    return 0


def run_serve(config: Config, host: Optional[str], port: Optional[int]) -> int:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "web.backend.main:app",
        app_dir=str(PROJECT_ROOT),
        host=host or config.web.host,
        port=port or config.web.port,
        log_level=config.logging.level.lower(),
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stream-minion",
        description="Stream Minion - Online audio resolution and caching",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a track and print its formats")
    resolve_parser.add_argument("track_id", help="Video id or URL")

    url_parser = subparsers.add_parser("url", help="Print a playable reference for a track")
    url_parser.add_argument("track_id", help="Video id or URL")

    download_parser = subparsers.add_parser("download", help="Download a track permanently")
    download_parser.add_argument("track_id", help="Video id or URL")
    download_parser.add_argument("--title", required=True)
    download_parser.add_argument("--artist", required=True)
    download_parser.add_argument("--album", default="")
    download_parser.add_argument("--artwork-url", default=None)

    prefetch_parser = subparsers.add_parser("prefetch", help="Warm the cache for tracks")
    prefetch_parser.add_argument("track_ids", nargs="+", help="Video ids or URLs")
    prefetch_parser.add_argument(
        "--timeout", type=float, default=None, help="Give up waiting after this many seconds"
    )

    subparsers.add_parser("sweep", help="Run one cache cleanup pass")
    subparsers.add_parser("stats", help="Show cache statistics")

    invalidate_parser = subparsers.add_parser("invalidate", help="Drop a track from both caches")
    invalidate_parser.add_argument("track_id", help="Video id or URL")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for the stream-minion command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.subcommand:
        parser.print_help()
        sys.exit(1)

    config = load_config()
    _setup(config)

    if args.subcommand == "serve":
        sys.exit(run_serve(config, args.host, args.port))

    manager = CacheManager.from_config(config)
    # One-shot commands only need the prefetch workers, not the janitor
    if args.subcommand == "prefetch":
        manager.scheduler.start()

    try:
        if args.subcommand == "resolve":
            code = run_resolve(manager, args.track_id)
        elif args.subcommand == "url":
            code = run_url(manager, args.track_id)
        elif args.subcommand == "download":
            code = run_download(
                manager, args.track_id, args.title, args.artist, args.album, args.artwork_url
            )
        elif args.subcommand == "prefetch":
            code = run_prefetch(manager, args.track_ids, timeout=args.timeout)
        elif args.subcommand == "sweep":
            code = run_sweep(manager)
        elif args.subcommand == "stats":
            print(json.dumps(manager.stats(), indent=2))
            code = 0
        elif args.subcommand == "invalidate":
            try:
                print(json.dumps(manager.invalidate(args.track_id)))
                code = 0
            except StreamError as e:
                print(f"Error: {e}", file=sys.stderr)
                code = 1
        else:
            parser.print_help()
            code = 1
    finally:
        manager.close()

    sys.exit(code)


if __name__ == "__main__":
    main()
