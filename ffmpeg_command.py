"""FFmpeg command building and media probing."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

import json
import logging
import pathlib
import subprocess

from quality import QualityProfile

import cache


log = logging.getLogger(__name__)

# Timing constants
HLS_SEGMENT_DURATION_SEC = 4
_GOP_FRAMES = 48  # 2 seconds at 24fps, two keyframes per segment
_PROBE_TIMEOUT_SEC = 60
_DEFAULT_FPS = 24.0

# Output naming
SEG_PREFIX = "segment_"  # Segment files are named segment_000.ts, segment_001.ts, etc.
VARIANT_PLAYLIST = "playlist.m3u8"
MASTER_PLAYLIST = "master.m3u8"

_load_settings: Callable[[], dict[str, Any]] = dict


class ProbeError(Exception):
    """Source could not be inspected (unparseable container, tool failure)."""


@dataclass(frozen=True, slots=True)
class SourceMedia:
    path: str
    container: str
    video_codec: str
    audio_codec: str
    width: int
    height: int
    duration: float  # seconds
    bitrate: int  # kbps, 0 if unknown
    fps: float = _DEFAULT_FPS


def init(load_settings: Callable[[], dict[str, Any]]) -> None:
    """Initialize module with settings loader."""
    global _load_settings
    _load_settings = load_settings


def get_settings() -> dict[str, Any]:
    """Get current settings."""
    return _load_settings()


# ===========================================================================
# Paths & Binaries
# ===========================================================================


def get_transcode_dir() -> pathlib.Path:
    """Root directory for transcoded output (one subdir per video)."""
    custom_dir = get_settings().get("transcode_dir", "")
    path = pathlib.Path(custom_dir) if custom_dir else cache.CACHE_DIR / "transcoded"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _ffmpeg_bin() -> str:
    return get_settings().get("ffmpeg_path") or "ffmpeg"


def _ffprobe_bin() -> str:
    return get_settings().get("ffprobe_path") or "ffprobe"


def get_encode_timeout(duration: float) -> float:
    """Wall-clock ceiling for one encode, proportional to source duration."""
    settings = get_settings()
    multiplier = float(settings.get("encode_timeout_multiplier", 10.0))
    minimum = float(settings.get("encode_timeout_min_secs", 300))
    maximum = float(settings.get("encode_timeout_max_secs", 6 * 3_600))
    return max(minimum, min(duration * multiplier, maximum))


# ===========================================================================
# Probing
# ===========================================================================


def _parse_frame_rate(rate: str) -> float:
    """Parse ffprobe's "num/den" frame rate, falling back to 24fps."""
    with suppress(ValueError, ZeroDivisionError, AttributeError):
        if "/" in rate:
            num, den = rate.split("/", 1)
            fps = float(num) / float(den)
        else:
            fps = float(rate)
        if fps > 0:
            return fps
    return _DEFAULT_FPS


def probe_source(source_path: str) -> SourceMedia:
    """Inspect a source file. Raises ProbeError if it can't be understood."""
    cmd = [
        _ffprobe_bin(),
        "-v",
        "quiet",
        "-print_format",
        "json",
        "-show_streams",
        "-show_format",
        str(source_path),
    ]
    log.info("Probing: %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
            timeout=_PROBE_TIMEOUT_SEC,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise ProbeError(f"ffprobe could not run on {source_path}: {e}") from e
    if result.returncode != 0:
        detail = (result.stderr or "").strip()[-500:]
        raise ProbeError(f"ffprobe exited {result.returncode} for {source_path}: {detail}")
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise ProbeError(f"ffprobe returned invalid JSON for {source_path}") from e

    video: dict[str, Any] = {}
    audio: dict[str, Any] = {}
    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type", "")
        if codec_type == "video" and not video:
            video = stream
        elif codec_type == "audio" and not audio:
            audio = stream
    if not video:
        raise ProbeError(f"No video stream in {source_path}")

    width = int(video.get("width") or 0)
    height = int(video.get("height") or 0)
    if width <= 0 or height <= 0:
        raise ProbeError(f"Invalid video dimensions {width}x{height} in {source_path}")

    fmt = data.get("format", {})
    duration = 0.0
    for raw in (fmt.get("duration"), video.get("duration")):
        with suppress(ValueError, TypeError):
            duration = float(raw)
        if duration > 0:
            break
    bitrate = 0
    with suppress(ValueError, TypeError):
        bitrate = int(fmt.get("bit_rate", 0) or 0) // 1000

    media = SourceMedia(
        path=str(source_path),
        container=fmt.get("format_name", ""),
        video_codec=video.get("codec_name", "").lower(),
        audio_codec=audio.get("codec_name", "").lower(),
        width=width,
        height=height,
        duration=duration,
        bitrate=bitrate,
        fps=_parse_frame_rate(video.get("r_frame_rate", "")),
    )
    log.info(
        "Probe: %s video=%s/%dx%d/%.2ffps audio=%s duration=%.0fs bitrate=%dkbps",
        media.container,
        media.video_codec,
        media.width,
        media.height,
        media.fps,
        media.audio_codec or "none",
        media.duration,
        media.bitrate,
    )
    return media


# ===========================================================================
# FFmpeg Command Building
# ===========================================================================


def _build_video_args(profile: QualityProfile) -> list[str]:
    """Scale into the target box, letterbox to exact size, fixed GOP."""
    w, h = profile.width, profile.height
    vf = (
        f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,setsar=1"
    )
    return [
        "-vf",
        vf,
        "-c:v",
        "libx264",
        "-b:v",
        f"{profile.video_bitrate}k",
        "-preset",
        "fast",
        "-profile:v",
        "main",
        "-g",
        str(_GOP_FRAMES),
        "-keyint_min",
        str(_GOP_FRAMES),
        "-sc_threshold",
        "0",
    ]


def _build_audio_args(profile: QualityProfile) -> list[str]:
    return ["-c:a", "aac", "-b:a", f"{profile.audio_bitrate}k", "-ac", "2", "-ar", "48000"]


def build_encode_cmd(
    source_path: str,
    profile: QualityProfile,
    output_dir: str | pathlib.Path,
) -> list[str]:
    """Build ffmpeg command encoding one rendition to a VOD HLS playlist."""
    out = pathlib.Path(output_dir)
    cmd = [
        _ffmpeg_bin(),
        "-hide_banner",
        "-loglevel",
        "error",
        "-nostats",
        "-progress",
        "pipe:1",
        "-y",
        "-i",
        str(source_path),
        # Audio is optional so silent sources still encode
        "-map",
        "0:v:0",
        "-map",
        "0:a:0?",
    ]
    cmd.extend(_build_video_args(profile))
    cmd.extend(_build_audio_args(profile))
    cmd.extend(
        [
            "-f",
            "hls",
            "-hls_time",
            str(HLS_SEGMENT_DURATION_SEC),
            "-hls_list_size",
            "0",
            "-hls_segment_type",
            "mpegts",
            "-hls_playlist_type",
            "vod",
            "-hls_segment_filename",
            str(out / f"{SEG_PREFIX}%03d.ts"),
            str(out / VARIANT_PLAYLIST),
        ]
    )
    return cmd


def build_thumbnail_cmd(
    source_path: str,
    output_path: str | pathlib.Path,
    timestamp: float,
    width: int,
    height: int,
) -> list[str]:
    """Build ffmpeg command grabbing a single frame at `timestamp` seconds."""
    return [
        _ffmpeg_bin(),
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-ss",
        f"{timestamp:.3f}",
        "-i",
        str(source_path),
        "-frames:v",
        "1",
        "-vf",
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
        str(output_path),
    ]
