#!/usr/bin/env python3
"""SongSmith — command-line client

Talks to a running SongSmith API and follows in-progress songs until they
finish.

Usage:
    python scripts/song_cli.py generate "a sea shanty about debugging" --watch
    python scripts/song_cli.py list
    python scripts/song_cli.py show <song-id>
    python scripts/song_cli.py retry <song-id> --watch
    python scripts/song_cli.py regenerate-video <song-id> --style Anime
    python scripts/song_cli.py watch
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict

REPO_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(REPO_ROOT))

from backend.services.client.api_client import ApiError, SongApiClient  # noqa: E402
from backend.services.client.job_registry import JobRegistry  # noqa: E402
from backend.services.shared.logging import setup_logging  # noqa: E402

DEFAULT_BASE_URL = os.environ.get("SONGSMITH_API_URL", "http://localhost:8000/api")


def _line(song: Dict[str, Any]) -> str:
    title = song.get("title") or song.get("prompt", "")[:40]
    status = song.get("status", "?")
    extra = f" (failed at: {song['failedStep']})" if song.get("failedStep") else ""
    return f"{song['id']}  {status:<20} {title}{extra}"


def _print_update(song: Dict[str, Any]) -> None:
    message = song.get("statusMessage") or ""
    print(f"{_line(song)}  {message}")


def _watch(registry: JobRegistry, interval: float) -> None:
    if not registry.tracked:
        print("Nothing in progress.")
        return
    registry.run(interval=interval, on_update=_print_update)
    for song_id in sorted(registry.songs):
        song = registry.songs[song_id]
        if song.get("videoUrl"):
            print(f"{song_id}  video: {song['videoUrl']}")


def cmd_generate(client: SongApiClient, args: argparse.Namespace) -> int:
    options = {}
    if args.weirdness is not None:
        options["weirdness"] = args.weirdness
    if args.vocal_gender:
        options["vocalGender"] = args.vocal_gender
    lyrics = Path(args.lyrics_file).read_text(encoding="utf-8") if args.lyrics_file else None

    song = client.generate(
        args.prompt,
        custom_lyrics=lyrics,
        video_style=args.style,
        difficulty=args.difficulty,
        advanced_options=options or None,
    )
    print(_line(song))
    if args.watch:
        registry = JobRegistry(client)
        registry.track(song)
        _watch(registry, args.interval)
    return 0


def cmd_list(client: SongApiClient, args: argparse.Namespace) -> int:
    songs = client.list_songs()
    if not songs:
        print("No songs yet.")
    for song in songs:
        print(_line(song))
    return 0


def cmd_show(client: SongApiClient, args: argparse.Namespace) -> int:
    print(json.dumps(client.get_song(args.song_id), indent=2))
    return 0


def cmd_retry(client: SongApiClient, args: argparse.Namespace) -> int:
    song = client.retry(client.get_song(args.song_id))
    print(_line(song))
    if args.watch:
        registry = JobRegistry(client)
        registry.track(song)
        _watch(registry, args.interval)
    return 0


def cmd_regenerate_video(client: SongApiClient, args: argparse.Namespace) -> int:
    song = client.regenerate_video(client.get_song(args.song_id), args.style, args.difficulty)
    print(_line(song))
    if args.watch:
        registry = JobRegistry(client)
        registry.track(song)
        _watch(registry, args.interval)
    return 0


def cmd_watch(client: SongApiClient, args: argparse.Namespace) -> int:
    registry = JobRegistry(client)
    registry.refresh()
    _watch(registry, args.interval)
    return 0


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SongSmith command-line client")
    parser.add_argument("--url", default=DEFAULT_BASE_URL, help="API base URL (default: %(default)s)")
    parser.add_argument("--interval", type=float, default=3.0, help="Polling interval in seconds")
    parser.add_argument("--verbose", "-v", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Start a new song")
    gen.add_argument("prompt")
    gen.add_argument("--lyrics-file", help="Use lyrics from this file instead of generating them")
    gen.add_argument("--style", help="Video style, e.g. Cinematic")
    gen.add_argument("--difficulty", choices=["Easy", "Medium", "Hard"])
    gen.add_argument("--weirdness", type=int, help="0-100")
    gen.add_argument("--vocal-gender", choices=["male", "female"])
    gen.add_argument("--watch", action="store_true", help="Follow progress until done")
    gen.set_defaults(func=cmd_generate)

    lst = sub.add_parser("list", help="List all songs, newest first")
    lst.set_defaults(func=cmd_list)

    show = sub.add_parser("show", help="Print one song as JSON")
    show.add_argument("song_id")
    show.set_defaults(func=cmd_show)

    retry = sub.add_parser("retry", help="Resume a failed song from its failed step")
    retry.add_argument("song_id")
    retry.add_argument("--watch", action="store_true")
    retry.set_defaults(func=cmd_retry)

    regen = sub.add_parser("regenerate-video", help="Re-render the music video")
    regen.add_argument("song_id")
    regen.add_argument("--style", required=True)
    regen.add_argument("--difficulty", choices=["Easy", "Medium", "Hard"])
    regen.add_argument("--watch", action="store_true")
    regen.set_defaults(func=cmd_regenerate_video)

    watch = sub.add_parser("watch", help="Follow every in-progress song until it finishes")
    watch.set_defaults(func=cmd_watch)

    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(level="DEBUG" if args.verbose else "WARNING")
    client = SongApiClient(args.url)
    try:
        return args.func(client, args)
    except ApiError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
