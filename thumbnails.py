"""Poster and preview thumbnail extraction."""

from __future__ import annotations

import logging
import pathlib
import subprocess

from ffmpeg_command import SourceMedia, build_thumbnail_cmd, get_settings


log = logging.getLogger(__name__)

POSTER_NAME = "thumbnail.jpg"
PREVIEW_DIR = "previews"
_POSTER_SIZE = (1280, 720)
_PREVIEW_SIZE = (320, 180)
_POSTER_OFFSET_SEC = 5.0
_THUMBNAIL_TIMEOUT_SEC = 60


def _run(cmd: list[str]) -> None:
    result = subprocess.run(
        cmd,
        check=False,
        capture_output=True,
        text=True,
        timeout=_THUMBNAIL_TIMEOUT_SEC,
    )
    if result.returncode != 0:
        raise RuntimeError(
            f"ffmpeg exited {result.returncode}: {(result.stderr or '').strip()[-300:]}"
        )


def preview_timestamps(duration: float, count: int) -> list[float]:
    """Evenly spaced whole-second timestamps, excluding the very start and end."""
    if duration <= 0 or count <= 0:
        return []
    interval = int(duration // (count + 1))
    if interval <= 0:
        return []
    return [float(interval * i) for i in range(1, count + 1)]


def generate_thumbnail(source: SourceMedia, output_path: pathlib.Path) -> pathlib.Path:
    """Grab a poster frame a few seconds in (or at 0 for very short clips)."""
    timestamp = _POSTER_OFFSET_SEC if source.duration > _POSTER_OFFSET_SEC else 0.0
    output_path.parent.mkdir(parents=True, exist_ok=True)
    _run(build_thumbnail_cmd(source.path, output_path, timestamp, *_POSTER_SIZE))
    log.info("Thumbnail generated: %s", output_path)
    return output_path


def generate_preview_thumbnails(
    source: SourceMedia,
    output_dir: pathlib.Path,
    count: int = 10,
) -> list[pathlib.Path]:
    """Extract `count` small frames spread across the video for scrub previews."""
    output_dir.mkdir(parents=True, exist_ok=True)
    paths = []
    for i, ts in enumerate(preview_timestamps(source.duration, count), start=1):
        path = output_dir / f"preview_{i}.jpg"
        _run(build_thumbnail_cmd(source.path, path, ts, *_PREVIEW_SIZE))
        paths.append(path)
    log.info("Preview thumbnails generated in %s (%d frames)", output_dir, len(paths))
    return paths


def generate_all(source: SourceMedia, video_dir: pathlib.Path) -> None:
    """Poster + previews for a transcoded video."""
    generate_thumbnail(source, video_dir / POSTER_NAME)
    count = int(get_settings().get("preview_thumbnail_count", 10))
    generate_preview_thumbnails(source, video_dir / PREVIEW_DIR, count)
