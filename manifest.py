"""HLS master manifest generation and entitlement-filtered stream info."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass, field, replace
from typing import Any

import logging
import os
import pathlib
import tempfile

from catalog import QualityVariant, Video
from encode_job import QualityResult
from ffmpeg_command import MASTER_PLAYLIST, VARIANT_PLAYLIST, get_transcode_dir
from quality import get_profile, is_within_tier, tier_index

import cache
import catalog
import errors


log = logging.getLogger(__name__)

MANIFEST_CONTENT_TYPE = "application/vnd.apple.mpegurl"


@dataclass(slots=True)
class StreamInfo:
    id: str
    content_id: str
    title: str
    duration: float
    hls_url: str
    poster_url: str = ""
    backdrop_url: str = ""
    qualities: list[dict[str, Any]] = field(default_factory=list)
    subtitles: list[dict[str, Any]] = field(default_factory=list)
    progress: float = 0.0
    completed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ===========================================================================
# Rendering
# ===========================================================================


def _sort_key(variant: QualityVariant) -> tuple[int, int]:
    return variant.bitrate, tier_index(variant.quality)


def render_master_playlist(variants: Iterable[QualityVariant]) -> str:
    """Render an HLS master playlist, one STREAM-INF per variant, ascending bandwidth."""
    lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
    for v in sorted(variants, key=_sort_key):
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={v.bitrate * 1000},"
            f'RESOLUTION={v.width}x{v.height},NAME="{v.quality}"'
        )
        lines.append(f"{v.quality}/{VARIANT_PLAYLIST}")
    return "\n".join(lines) + "\n"


def variants_from_results(results: Iterable[QualityResult]) -> list[QualityVariant]:
    return [
        QualityVariant(
            quality=r.profile,
            width=r.width,
            height=r.height,
            bitrate=r.bitrate,
            file_path=r.output_path,
            file_size=r.byte_size,
        )
        for r in results
    ]


def write_master_manifest(video_dir: pathlib.Path, variants: Iterable[QualityVariant]) -> pathlib.Path:
    """Atomically (re)place master.m3u8 in video_dir. Readers never see a partial file."""
    video_dir.mkdir(parents=True, exist_ok=True)
    target = video_dir / MASTER_PLAYLIST
    content = render_master_playlist(variants)
    fd, tmp_name = tempfile.mkstemp(prefix=".master_", suffix=".m3u8", dir=video_dir)
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.replace(tmp_name, target)
    except OSError:
        pathlib.Path(tmp_name).unlink(missing_ok=True)
        raise
    log.info("Master playlist written: %s", target)
    return target


# ===========================================================================
# Filtering
# ===========================================================================


def filter_variants(variants: Iterable[QualityVariant], max_quality: str) -> list[QualityVariant]:
    """Keep variants at or below max_quality on the ladder, ascending bitrate."""
    kept = [v for v in variants if is_within_tier(v.quality, max_quality)]
    return sorted(kept, key=_sort_key)


def _get_ready_video(video_id: str) -> Video:
    video = catalog.get_video(video_id)
    if video is None:
        raise errors.NotFound("Video not found")
    if not video.playable:
        raise errors.NotReady("Video is not ready for streaming")
    return video


def get_master_manifest(video_id: str, max_quality: str) -> str:
    """Master playlist for a READY video limited to the caller's entitlement.

    Zero retained variants yields a header-only playlist, not an error.
    """
    get_profile(max_quality)
    video = _get_ready_video(video_id)
    return render_master_playlist(filter_variants(video.qualities, max_quality))


# ===========================================================================
# Stream Info
# ===========================================================================


def _build_stream_info(video: Video) -> StreamInfo:
    content = catalog.get_content(video.content_id)
    return StreamInfo(
        id=video.id,
        content_id=video.content_id,
        title=video.title or (content.title if content else ""),
        duration=video.duration,
        hls_url=f"/stream/{video.id}/{MASTER_PLAYLIST}",
        poster_url=content.poster_url if content else "",
        backdrop_url=content.backdrop_url if content else "",
        qualities=[
            {"quality": q.quality, "width": q.width, "height": q.height, "bitrate": q.bitrate}
            for q in sorted(video.qualities, key=_sort_key)
        ],
        subtitles=[
            {
                "language": s.language,
                "label": s.label,
                "url": f"/subtitles/{s.file_path}",
                "is_default": s.is_default,
            }
            for s in catalog.get_subtitles(video.id)
        ],
    )


def get_stream_info(video_id: str, user_id: str | None, max_quality: str) -> StreamInfo:
    """Stream info with qualities filtered by entitlement and the caller's progress."""
    get_profile(max_quality)
    cache_key = f"stream:{video_id}"
    base: StreamInfo | None = cache.cache_get(cache_key)
    if base is None:
        base = _build_stream_info(_get_ready_video(video_id))
        cache.cache_set(cache_key, base, cache.STREAM_INFO_TTL)

    info = replace(
        base,
        qualities=[q for q in base.qualities if is_within_tier(q["quality"], max_quality)],
        subtitles=list(base.subtitles),
    )
    if user_id:
        progress = catalog.get_watch_progress(user_id, video_id)
        if progress:
            info.progress = progress.position
            info.completed = progress.completed
    return info


def get_variant_dir(video_id: str, quality: str, max_quality: str) -> pathlib.Path:
    """On-disk directory of one permitted rendition (for serving playlists/segments)."""
    get_profile(max_quality)
    video = _get_ready_video(video_id)
    variant = next((q for q in video.qualities if q.quality == quality), None)
    if variant is None or not is_within_tier(quality, max_quality):
        raise errors.NotFound("Quality not available")
    path = get_transcode_dir() / variant.file_path
    if not path.is_dir():
        raise errors.NotFound("Video file not found")
    return path
