#!/usr/bin/env python3
"""transcode_file.py -- Transcode a local file into the HLS ladder.

Registers the file in the catalog (if not already there), runs the full
transcode with live per-rendition progress, and prints the resulting
master playlist path.

The service modules are imported as installed top-level modules, so
install the project once from the repo root first:

    pip install -e .

Usage:
    ./transcode_file.py movie.mp4 --video-id movie-1
    ./transcode_file.py movie.mp4 --video-id movie-1 --max-jobs 1 --no-thumbnails
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import pathlib
import sys

from catalog import VideoStatus
from events import ProgressEvent
from transcoder import Transcoder

import cache
import catalog
import errors
import ffmpeg_command


def _print_progress(event: ProgressEvent) -> None:
    kbps = f" {event.current_kbps:.0f}kbps" if event.current_kbps else ""
    print(f"  {event.quality:<9} {event.percent:5.1f}%{kbps}", file=sys.stderr)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Transcode a local video file into an HLS quality ladder.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("source", type=pathlib.Path, help="Source video file")
    parser.add_argument(
        "--video-id",
        type=str,
        default="",
        help="Catalog video id (default: source file stem)",
    )
    parser.add_argument(
        "--content-id",
        type=str,
        default="",
        help="Catalog content id (default: same as video id)",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=pathlib.Path,
        default=None,
        help="Transcode output root (default: transcode_dir setting)",
    )
    parser.add_argument(
        "--max-jobs",
        type=int,
        default=None,
        help="Concurrent encoder processes (default: max_concurrent_encodes setting)",
    )
    parser.add_argument(
        "--thumbnails",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Generate poster and preview thumbnails",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not args.source.is_file():
        sys.exit(f"Not a file: {args.source}")

    settings = cache.load_server_settings()
    if args.output is not None:
        settings["transcode_dir"] = str(args.output)
    settings["generate_thumbnails"] = args.thumbnails
    ffmpeg_command.init(lambda: settings)
    catalog.init(cache.CACHE_DIR)

    video_id = args.video_id or args.source.stem
    if catalog.get_video(video_id) is None:
        catalog.create_video(video_id, args.content_id or video_id, title=args.source.stem)

    transcoder = Transcoder(args.max_jobs)
    try:
        results = asyncio.run(
            transcoder.start_transcode(video_id, str(args.source.resolve()), _print_progress)
        )
    except errors.StreamingError as e:
        sys.exit(f"Transcode failed: {e.message}")

    video = catalog.get_video(video_id)
    assert video is not None and video.status == VideoStatus.READY
    for r in results:
        print(f"{r.profile:<9} {r.width}x{r.height} {r.segment_count} segments {r.byte_size} bytes")
    print(ffmpeg_command.get_transcode_dir() / video.hls_path)


if __name__ == "__main__":
    main()
